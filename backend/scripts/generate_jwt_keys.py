"""
Generate the RSA key pair used to sign access and refresh tokens.
Run once per environment: python scripts/generate_jwt_keys.py [output_dir]

Then point the API at the files:

  JWT_PRIVATE_KEY_FILE=keys/jwt_private.pem
  JWT_PUBLIC_KEY_FILE=keys/jwt_public.pem
"""

import sys
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from app.core.security import generate_rsa_key_pair


def main():
    out_dir = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("keys")
    private_path = out_dir / "jwt_private.pem"
    public_path = out_dir / "jwt_public.pem"
    if private_path.exists():
        print(f"{private_path} already exists. Refusing to overwrite.")
        sys.exit(1)

    out_dir.mkdir(parents=True, exist_ok=True)
    keys = generate_rsa_key_pair()
    private_path.write_text(keys.private_key)
    private_path.chmod(0o600)
    public_path.write_text(keys.public_key)
    print(f"Wrote {private_path} and {public_path}")


if __name__ == "__main__":
    main()
