"""Music Dashboard: a Spotify relay server (music_dashboard.main) and its Python client (music_dashboard.relay_client)."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("music-dashboard")
except PackageNotFoundError:
    __version__ = "dev"
