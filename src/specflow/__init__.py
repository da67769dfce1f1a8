"""
specflow: MD conformer search, MOPAC screening and ORCA excited states
driven from one project directory.
"""

__version__ = "0.1.0"
