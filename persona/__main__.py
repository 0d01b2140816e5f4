"""Allow running Persona as ``python -m persona``."""

from persona.cli.cli import main

if __name__ == "__main__":
    main()
