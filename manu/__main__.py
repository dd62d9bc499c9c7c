"""Allow ``python -m manu``."""
from manu.app import main

main()
