"""
spotify-sync: transfer Spotify playlists and liked songs between accounts.

Log in to two accounts, then copy the source library into the target:
playlists are created (or merged into a same-named playlist the target
already owns) with their track order, and liked songs are added without
duplicates. Re-running a transfer only writes what is still missing.

Packages:
    core       configuration, credential store, exceptions, logging
    spotify    OAuth login, token refresh, the account-bound API client
    transfer   planning and execution of a transfer
"""

__version__ = "0.1.0"
__author__ = "spotify-sync contributors"
