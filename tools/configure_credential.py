"""Guarda un JSON de service account en el vault: python tools/configure_credential.py sa.json"""
from pathlib import Path
import sys

from ticketpass.core.config import Settings
from ticketpass.core.errors import ConfigurationError
from ticketpass.core.vault import CredentialVault

path = Path(sys.argv[1] if len(sys.argv) > 1 else "service-account.json")
settings = Settings()
vault = CredentialVault(settings.vault_dir, default_issuer_id=settings.issuer_id)
try:
    cred = vault.configure(path.read_bytes())
except ConfigurationError as e:
    print(f"error: {e}", file=sys.stderr)
    sys.exit(1)
print(f"stored credential for {cred.issuer_email} (issuer {cred.issuer_id or '-'}) in {vault.blob_path}")
