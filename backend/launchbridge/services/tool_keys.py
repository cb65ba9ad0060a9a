"""The tool's own RSA signing key and its public key set.

Usage::

    python -m launchbridge.services.tool_keys [--keys-dir keys] [--jwks-file public/jwks.json]

writes ``private.pem`` (PKCS#8, keep secret) and the public JWKS.
"""

import argparse
import json
import logging
from pathlib import Path
from typing import Any

from authlib.jose import JsonWebKey
from authlib.jose.errors import JoseError

logger = logging.getLogger(__name__)

KEY_SIZE = 2048
SIGNING_ALGORITHM = "RS256"


def generate_private_key():
    return JsonWebKey.generate_key("RSA", KEY_SIZE, is_private=True)


def public_jwk(key, kid: str | None = None) -> dict[str, Any]:
    """Public members of ``key`` as a JWK, tagged for signature use."""
    jwk = key.as_dict(is_private=False)
    jwk["use"] = "sig"
    jwk["alg"] = SIGNING_ALGORITHM
    jwk["kid"] = kid or key.thumbprint()
    return jwk


def load_public_key_set(private_key_file: str | Path) -> dict[str, Any]:
    """Public JWKS for the private key at ``private_key_file``.

    A missing or unreadable key yields an empty set so platforms
    never see a half-configured key.
    """
    path = Path(private_key_file)
    if not path.is_file():
        logger.warning(f"Tool private key not found at {path}, publishing empty key set")
        return {"keys": []}

    try:
        key = JsonWebKey.import_key(path.read_bytes(), {"kty": "RSA"})
    except (JoseError, ValueError) as e:
        logger.error(f"Cannot load tool private key from {path}: {e}")
        return {"keys": []}

    return {"keys": [public_jwk(key)]}


def write_key_pair(keys_dir: str | Path, jwks_file: str | Path) -> dict[str, Any]:
    """Generate a fresh key pair, write the private PEM and public JWKS.

    The kid is the key thumbprint, matching what ``load_public_key_set`` serves.
    """
    keys_dir = Path(keys_dir)
    jwks_file = Path(jwks_file)
    keys_dir.mkdir(parents=True, exist_ok=True)
    jwks_file.parent.mkdir(parents=True, exist_ok=True)

    key = generate_private_key()
    jwks = {"keys": [public_jwk(key)]}

    private_path = keys_dir / "private.pem"
    private_path.write_bytes(key.as_pem(is_private=True))
    private_path.chmod(0o600)
    jwks_file.write_text(json.dumps(jwks, indent=2), encoding="utf-8")
    return jwks


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Generate the tool signing key pair")
    parser.add_argument("--keys-dir", default="keys")
    parser.add_argument("--jwks-file", default="public/jwks.json")
    args = parser.parse_args(argv)

    jwks = write_key_pair(args.keys_dir, args.jwks_file)
    print("Generated:")
    print(f" - {Path(args.keys_dir) / 'private.pem'} (SECRET, do not commit)")
    print(f" - {args.jwks_file} (kid: {jwks['keys'][0]['kid']})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
