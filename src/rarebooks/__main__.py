"""Allow running with: python -m rarebooks [serve|discover|monitor|sweep|lots ID...]"""

from .main import main

main()
