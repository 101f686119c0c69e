"""Command line interface for testing configuration loading"""
from . import settings_conf
from pathlib import Path

def main():
    """Display loaded configuration"""
    print("\nSettings Configuration:")
    print("-" * 50)
    for key, value in settings_conf.items():
        if key == 'jwt_secret' and value:
            value = '********'
        print(f"{key}: {value}")

    # Save example configuration file
    examples_dir = Path("examples")
    examples_dir.mkdir(exist_ok=True)

    with open(examples_dir / "settings.conf.example", "w") as f:
        f.write("""[DEFAULT]
# Database connection URL (PostgreSQL)
db_url = postgresql://root@localhost:26257/splitsubs?sslmode=disable
# Persistence backend: postgres or memory
store_backend = postgres
# Secret used to sign session tokens (random on every start when empty)
jwt_secret =
session_expiry_days = 30
# Decimal places kept on member shares
share_precision = 4
api_host = 0.0.0.0
api_port = 8000
# Comma separated list of allowed origins
cors_origins = *
default_currency = USD
""")

if __name__ == "__main__":
    main()
