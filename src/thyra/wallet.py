"""
Arweave wallet — the keypair that signs every data item.

The wallet is an RSA-4096 key stored as a JSON Web Key, the same file
format every Arweave tool reads. It is created once and reused; if the
file cannot be written (read-only container, stateless platform) the
process keeps an in-memory wallet and says so.

Usage:
    wallet = Wallet.load_or_create(Path("~/.thyra/wallet.json"))
    wallet.address          # base64url(sha256(n))
    wallet.sign(message)    # RSA-PSS / SHA-256
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import os
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from .errors import ThyraError

logger = logging.getLogger("thyra.wallet")

KEY_SIZE = 4096
PUBLIC_EXPONENT = 65537
OWNER_LENGTH = KEY_SIZE // 8
JWK_FIELDS = ("n", "e", "d", "p", "q", "dp", "dq", "qi")


class WalletError(ThyraError):
    """Raised when a wallet file cannot be parsed as an RSA JWK."""

    code = "WALLET_ERROR"


def b64url_encode(data: bytes) -> str:
    """Base64url without padding, as used by JWK and Arweave ids."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


def _int_to_b64url(value: int, length: Optional[int] = None) -> str:
    size = length or max(1, (value.bit_length() + 7) // 8)
    return b64url_encode(value.to_bytes(size, "big"))


def _b64url_to_int(value: str) -> int:
    return int.from_bytes(b64url_decode(value), "big")


# Deterministic RSA-PSS: salt length 0 makes the signature a pure function
# of key and message. Verifiers use auto salt detection and accept it.
_PSS = padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=0)


class Wallet:
    """An Arweave RSA keypair.

    Args:
        private_key: The RSA private key.
        path: File the wallet was loaded from or saved to, if any.
        persisted: Whether the key exists on disk.
    """

    def __init__(
        self,
        private_key: rsa.RSAPrivateKey,
        path: Optional[Path] = None,
        persisted: bool = False,
    ) -> None:
        if private_key.key_size != KEY_SIZE:
            raise WalletError(f"Arweave wallets are RSA-{KEY_SIZE}, got RSA-{private_key.key_size}")
        self._key = private_key
        self.path = path
        self.persisted = persisted

    # -- construction -------------------------------------------------------

    @classmethod
    def generate(cls) -> "Wallet":
        """Create a fresh in-memory wallet."""
        key = rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=KEY_SIZE)
        return cls(key)

    @classmethod
    def from_jwk(cls, jwk: dict, path: Optional[Path] = None) -> "Wallet":
        """Build a wallet from a JWK mapping.

        Raises:
            WalletError: If required fields are missing or inconsistent.
        """
        if not isinstance(jwk, dict):
            raise WalletError("Wallet JWK must be a JSON object")
        missing = [f for f in JWK_FIELDS if f not in jwk]
        if jwk.get("kty", "RSA") != "RSA" or missing:
            raise WalletError(f"Not an RSA JWK (missing: {', '.join(missing) or 'kty'})")
        try:
            public = rsa.RSAPublicNumbers(_b64url_to_int(jwk["e"]), _b64url_to_int(jwk["n"]))
            numbers = rsa.RSAPrivateNumbers(
                p=_b64url_to_int(jwk["p"]),
                q=_b64url_to_int(jwk["q"]),
                d=_b64url_to_int(jwk["d"]),
                dmp1=_b64url_to_int(jwk["dp"]),
                dmq1=_b64url_to_int(jwk["dq"]),
                iqmp=_b64url_to_int(jwk["qi"]),
                public_numbers=public,
            )
            key = numbers.private_key()
        except (ValueError, TypeError) as exc:
            raise WalletError(f"Invalid RSA JWK: {exc}") from exc
        return cls(key, path=path, persisted=path is not None)

    @classmethod
    def load(cls, path: Path) -> "Wallet":
        """Load a wallet from a JWK file.

        Raises:
            FileNotFoundError: If the file does not exist.
            WalletError: If the file is not a usable JWK.
        """
        path = Path(path).expanduser()
        try:
            jwk = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise WalletError(f"Wallet file is not JSON: {path}") from exc
        return cls.from_jwk(jwk, path=path)

    @classmethod
    def load_or_create(cls, path: Path) -> "Wallet":
        """Load the wallet at ``path``, creating and saving one if absent.

        A wallet that cannot be saved is still returned, with
        ``persisted=False``. Every restart then gets a new address.
        """
        path = Path(path).expanduser()
        if path.exists():
            wallet = cls.load(path)
            logger.info("Loaded existing wallet: %s", wallet.address)
            return wallet

        logger.info("Creating new wallet...")
        wallet = cls.generate()
        logger.info("New wallet created: %s", wallet.address)
        try:
            wallet.save(path)
            logger.info("Wallet saved to: %s", path)
        except OSError as exc:
            logger.warning("Could not save wallet (%s), running with an in-memory wallet", exc)
        return wallet

    # -- persistence --------------------------------------------------------

    def to_jwk(self) -> dict:
        """Export the private key as a JWK mapping."""
        numbers = self._key.private_numbers()
        public = numbers.public_numbers
        return {
            "kty": "RSA",
            "n": _int_to_b64url(public.n, OWNER_LENGTH),
            "e": _int_to_b64url(public.e),
            "d": _int_to_b64url(numbers.d),
            "p": _int_to_b64url(numbers.p),
            "q": _int_to_b64url(numbers.q),
            "dp": _int_to_b64url(numbers.dmp1),
            "dq": _int_to_b64url(numbers.dmq1),
            "qi": _int_to_b64url(numbers.iqmp),
        }

    def _write_jwk(self, path: Path) -> Path:
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(str(path), os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(json.dumps(self.to_jwk(), indent=2))
        # O_CREAT leaves the mode of an existing file alone
        try:
            path.chmod(0o600)
        except OSError:
            logger.debug("Could not restrict permissions on %s", path)
        return path

    def save(self, path: Path) -> Path:
        """Write the JWK to ``path`` (mode 0600).

        Raises:
            OSError: If the file cannot be written.
        """
        path = self._write_jwk(path)
        self.path = path
        self.persisted = True
        return path.resolve()

    def export(self, path: Path) -> Path:
        """Copy the wallet to another file (mode 0600). Returns the absolute path."""
        return self._write_jwk(path).resolve()

    # -- identity -----------------------------------------------------------

    @property
    def owner(self) -> bytes:
        """Raw 512-byte modulus, the ``owner`` field of a data item."""
        return self._key.public_key().public_numbers().n.to_bytes(OWNER_LENGTH, "big")

    @property
    def address(self) -> str:
        return owner_to_address(self.owner)

    @property
    def private_exponent(self) -> bytes:
        """Secret key material, used only to derive deployment keys."""
        return self._key.private_numbers().d.to_bytes(OWNER_LENGTH, "big")

    def sign(self, message: bytes) -> bytes:
        """Sign with RSA-PSS / SHA-256 (deterministic, 512 bytes)."""
        return self._key.sign(message, _PSS, hashes.SHA256())


def owner_to_address(owner: bytes) -> str:
    """Arweave address for a raw owner modulus."""
    return b64url_encode(hashlib.sha256(owner).digest())


def verify_signature(owner: bytes, message: bytes, signature: bytes) -> bool:
    """Check an RSA-PSS signature made by the wallet owning ``owner``."""
    from cryptography.exceptions import InvalidSignature

    public = rsa.RSAPublicNumbers(PUBLIC_EXPONENT, int.from_bytes(owner, "big")).public_key()
    try:
        public.verify(
            signature,
            message,
            padding.PSS(mgf=padding.MGF1(hashes.SHA256()), salt_length=padding.PSS.AUTO),
            hashes.SHA256(),
        )
    except InvalidSignature:
        return False
    return True
