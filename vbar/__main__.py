"""Allow ``python -m vbar``."""

from .cli import main

if __name__ == "__main__":
    main()
