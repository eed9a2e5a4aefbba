"""Entry point for ``python -m media_catalog``"""

from .cli import main

if __name__ == "__main__":
    main()
