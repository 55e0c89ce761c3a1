"""
TOTP engine: enrollment secrets, provisioning QR codes and code checks.
"""
import time
from dataclasses import dataclass
from typing import Optional
import pyotp
import qrcode
import qrcode.image.svg
from pyotp.utils import strings_equal

CODE_DIGITS = 6
DEFAULT_SKEW = 1  # accept the adjacent 30-second steps for clock drift


@dataclass(frozen=True)
class EnrollmentSecret:
    secret: str
    provisioning_uri: str
    qr_code_svg: str


def generate_secret(label: str, issuer: str) -> EnrollmentSecret:
    """Create a fresh base32 secret and a scannable otpauth:// payload for it."""
    secret = pyotp.random_base32()
    uri = pyotp.TOTP(secret).provisioning_uri(name=label, issuer_name=issuer)
    img = qrcode.make(uri, image_factory=qrcode.image.svg.SvgPathImage)
    return EnrollmentSecret(
        secret=secret,
        provisioning_uri=uri,
        qr_code_svg=img.to_string(encoding='unicode'),
    )


def normalize_code(code) -> str:
    return ''.join(str(code or '').split())


def match_step(secret: str, code, skew: int = DEFAULT_SKEW, for_time: float = None) -> Optional[int]:
    """Return the time step the code belongs to, or None if it matches no step in the window."""
    code = normalize_code(code)
    if not secret or len(code) != CODE_DIGITS or not code.isdigit():
        return None
    totp = pyotp.TOTP(secret)
    now = time.time() if for_time is None else for_time
    current = int(now // totp.interval)
    for step in range(current - skew, current + skew + 1):
        if strings_equal(code, totp.generate_otp(step)):
            return step
    return None


def verify(secret: str, code, skew: int = DEFAULT_SKEW, for_time: float = None) -> bool:
    return match_step(secret, code, skew=skew, for_time=for_time) is not None
