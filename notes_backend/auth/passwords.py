from passlib.context import CryptContext

# bcrypt only accepts work factors in this range
MIN_ROUNDS = 4
MAX_ROUNDS = 31


# PUBLIC_INTERFACE
def create_password_context(rounds: int = 12) -> CryptContext:
    """Password hashing setup; ``rounds`` is the bcrypt work factor."""
    if not MIN_ROUNDS <= rounds <= MAX_ROUNDS:
        raise ValueError(f"bcrypt rounds must be between {MIN_ROUNDS} and {MAX_ROUNDS}")
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


# PUBLIC_INTERFACE
def get_password_hash(pwd_context: CryptContext, password: str) -> str:
    """Hash the plain password."""
    return pwd_context.hash(password)


# PUBLIC_INTERFACE
def verify_password(pwd_context: CryptContext, plain_password: str, hashed_password: str) -> bool:
    """Verify password against stored hash."""
    return pwd_context.verify(plain_password, hashed_password)


def burn_verify(pwd_context: CryptContext) -> None:
    """Spend the same time as a real verification when there is no hash to check."""
    pwd_context.dummy_verify()
