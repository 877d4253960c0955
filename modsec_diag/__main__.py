"""Allow running as python -m modsec_diag."""

from modsec_diag.cli import cli

if __name__ == "__main__":
    cli()
