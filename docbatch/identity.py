"""
DOCBATCH Identity

Name, tagline and banner shared by the CLI.
"""

from docbatch import __version__

__codename__ = "DOCBATCH"
__tagline__ = "Budgeted batches. Tracked tasks. Verified artifacts."

BANNER = r"""
  ___   ___   ___ ___   _ _____ ___ _  _
 |   \ / _ \ / __| _ ) /_\_   _/ __| || |
 | |) | (_) | (__| _ \/ _ \| || (__| __ |
 |___/ \___/ \___|___/_/ \_\_| \___|_||_|
"""

__all__ = ["__codename__", "__tagline__", "__version__", "BANNER"]
