"""winupdate - stage and run Windows Update scripts on remote hosts"""

__version__ = "0.1.0"
