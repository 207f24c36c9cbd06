from .drive_client import DriveClient, build_query, parse_remote_file

__all__ = ["DriveClient", "build_query", "parse_remote_file"]
