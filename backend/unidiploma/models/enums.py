import enum

# Stored as VARCHAR columns, not native PG ENUM types, so adding a value
# never needs an ALTER TYPE migration.


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    UNIVERSITY_STAFF = "university_staff"
    VERIFIER = "verifier"
    # Ministry (Enseignement Supérieur et Universitaire) staff
    ESU_STAFF = "esu_staff"


class SignerRole(str, enum.Enum):
    DEAN = "Doyen de la faculté"
    ACADEMIC_SECRETARY = "Secrétaire générale académique"


class DiplomaStatus(str, enum.Enum):
    DRAFT = "draft"
    ISSUED = "issued"
    AUTHENTICATED = "authenticated"


class VerificationStatus(str, enum.Enum):
    AUTHENTIC = "authentic"
    REGISTERED_NOT_AUTHENTICATED = "registered_not_authenticated"
    NOT_FOUND = "not_found"
