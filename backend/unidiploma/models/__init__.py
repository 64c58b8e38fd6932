from unidiploma.models.blacklisted_token import BlacklistedToken
from unidiploma.models.department import Department
from unidiploma.models.diploma import Diploma
from unidiploma.models.faculty import Faculty
from unidiploma.models.promotion import Promotion
from unidiploma.models.signer import Signer
from unidiploma.models.student import Student
from unidiploma.models.user import User

__all__ = [
    "BlacklistedToken",
    "Department",
    "Diploma",
    "Faculty",
    "Promotion",
    "Signer",
    "Student",
    "User",
]
