"""
HTTP surface of the audio bridge.

Public endpoints stream and list audio; admin endpoints inspect manifests,
control the built-in FTP server and run the import pipelines. All services
are attached to the app by ``create_app``; nothing is held in module state.
"""

import logging
import re
from typing import Optional
from urllib.parse import quote

from flask import Blueprint, Flask, Response, current_app, jsonify, redirect, request
from flask_cors import CORS

from shared.auth import SupabaseIdentityProvider, require_admin
from shared.config import BridgeConfig
from shared.constants import AUDIO_KEY_PREFIX, is_audio_file
from shared.exceptions import (
    BridgeError, ConfigurationError, ConnectError, DecodeError, DownloadError,
    NotFoundError, StorageError, TempStorageFullError,
)
from metainfo import decode_manifest, select_audio_files
from ftp_bridge.client import RemoteTransferClient, RemoteTransferConfig
from ftp_bridge.server import FTPServerConfig, ServerRegistry
from storage.cloudflare_r2 import CloudflareR2Provider
from storage.ingest import DownloadEngine, ensure_temp_capacity, import_from_download_engine, import_from_remote
from storage.streaming import StreamingGateway

logger = logging.getLogger(__name__)

api = Blueprint("api", __name__, url_prefix="/api")

_INFO_HASH_RE = re.compile(r"^[0-9a-fA-F]{40}$")


class BridgeServices:
    """Long-lived collaborators shared by every request of one app."""

    def __init__(self, config: BridgeConfig, registry: ServerRegistry, s3_client=None,
                 download_engine: Optional[DownloadEngine] = None):
        self.config = config
        self.registry = registry
        self.download_engine = download_engine
        self._s3_client = s3_client
        self._provider: Optional[CloudflareR2Provider] = None

    @property
    def provider(self) -> CloudflareR2Provider:
        """
        Bucket provider, created on first use.

        Raises:
            ConfigurationError: If no client was injected and R2 is not configured
        """
        if self._provider is None:
            self._provider = CloudflareR2Provider.from_config(self.config, self._s3_client)
        return self._provider

    @property
    def storage_available(self) -> bool:
        return self._s3_client is not None or self.config.storage_configured


def services() -> BridgeServices:
    return current_app.extensions["audio_bridge"]


def _error_status(error: BridgeError) -> int:
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, DecodeError):
        return 400
    if isinstance(error, ConfigurationError):
        return 503
    if isinstance(error, TempStorageFullError):
        return 507
    if isinstance(error, (ConnectError, DownloadError, StorageError)):
        return 502
    return 500


@api.errorhandler(BridgeError)
def handle_bridge_error(error):
    status = _error_status(error)
    if status >= 500:
        logger.error("API: %s: %s", type(error).__name__, error)
    return jsonify({"error": str(error)}), status


def _stream_url(key: str) -> str:
    return f"{request.host_url.rstrip('/')}/api/stream?key={quote(key, safe='')}"


# --- Public Endpoints ---

@api.route('/health')
def health_check():
    svc = services()
    return jsonify({
        "status": "healthy",
        "storage": svc.storage_available,
        "ftpServer": svc.registry.is_running,
    })


@api.route('/stream', methods=['GET'])
def stream_audio():
    """Serve one object, whole or by byte range, for in-browser playback."""
    key = request.args.get('key')
    if not key:
        return jsonify({"error": "File key is required"}), 400

    svc = services()
    if svc.config.r2_cdn_domain:
        return redirect(f"{svc.config.r2_cdn_domain}/{key}")

    gateway = StreamingGateway(svc.provider.directory_adapter())
    result = gateway.serve(key, request.headers.get('Range'))
    # Passed unwrapped so the WSGI close() reaches the object stream
    return Response(result.body, status=result.status, headers=result.headers)


@api.route('/files', methods=['GET'])
def list_files():
    prefix = request.args.get('prefix', AUDIO_KEY_PREFIX)
    svc = services()
    if not svc.storage_available:
        return jsonify({"error": "R2 storage not configured", "files": []})

    provider = svc.provider
    try:
        objects = list(provider.directory_adapter().iter_audio_objects(prefix))
    except StorageError as e:
        # Players expect JSON, never an error page
        return jsonify({"error": "Failed to list audio files", "files": [], "details": str(e)})

    files = []
    for obj in objects:
        key = obj.path.lstrip("/")
        files.append({
            "key": key,
            "name": obj.name,
            "size": obj.size,
            "lastModified": obj.modified.isoformat() if obj.modified else None,
            "url": provider.get_file_url(key),
        })
    return jsonify({"files": files})


@api.route('/playlist', methods=['GET'])
def get_playlist():
    """Every audio object as an M3U playlist (default) or JSON."""
    fmt = request.args.get('format', 'm3u')
    adapter = services().provider.directory_adapter()
    objects = list(adapter.iter_audio_objects(AUDIO_KEY_PREFIX))

    if fmt == 'm3u':
        lines = ["#EXTM3U", "#PLAYLIST:Audio Stream Playlist", ""]
        for obj in objects:
            title = obj.name.rsplit(".", 1)[0]
            lines.append(f"#EXTINF:-1,{title}")
            lines.append(_stream_url(obj.path.lstrip("/")))
            lines.append("")
        return Response(
            "\n".join(lines),
            mimetype='audio/x-mpegurl',
            headers={'Content-Disposition': 'attachment; filename="playlist.m3u"'},
        )

    return jsonify({"files": [{
        "name": obj.name,
        "url": _stream_url(obj.path.lstrip("/")),
        "key": obj.path.lstrip("/"),
        "size": obj.size,
    } for obj in objects]})


# --- Admin: Manifests ---

@api.route('/admin/manifest', methods=['POST'])
@require_admin
def inspect_manifest():
    upload = request.files.get('torrent')
    if upload is None:
        return jsonify({"error": "No torrent file uploaded"}), 400
    if not (upload.filename or "").endswith('.torrent'):
        return jsonify({"error": "Invalid file type. Please upload a .torrent file"}), 400

    try:
        manifest = decode_manifest(upload.read())
    except DecodeError as e:
        return jsonify({"error": "Failed to process torrent file", "details": str(e)}), 400

    audio_files = select_audio_files(manifest)
    logger.info("API: Parsed manifest %r: %d files, %d audio",
                manifest.name, len(manifest.files), len(audio_files))
    return jsonify({
        "success": True,
        "torrentInfo": {
            "name": manifest.name,
            "totalSize": manifest.total_size,
            "infoHash": manifest.info_hash_hex,
            "magnetURI": manifest.magnet_uri,
            "totalFiles": len(manifest.files),
            "audioFiles": [{
                "name": entry.name,
                "size": entry.length,
                "path": entry.display_path,
            } for entry in audio_files],
        },
    })


@api.route('/admin/torrent/download', methods=['POST'])
@require_admin
def download_torrent():
    svc = services()
    if svc.download_engine is None:
        return jsonify({"error": "No download engine configured"}), 501

    data = request.get_json(silent=True) or {}
    info_hash = data.get('torrentHash') or ""
    magnet_link = data.get('magnetLink')
    selected = data.get('selectedFiles') or []
    if not info_hash or not magnet_link or not selected:
        return jsonify({"error": "Missing required parameters"}), 400
    if not _INFO_HASH_RE.match(info_hash):
        return jsonify({"error": "Invalid torrent hash"}), 400

    provider = svc.provider
    ensure_temp_capacity(svc.config.temp_dir, svc.config.max_temp_storage_mb)
    keys = import_from_download_engine(
        svc.download_engine, provider, info_hash.lower(), magnet_link, selected, svc.config.temp_dir
    )
    return jsonify({
        "success": True,
        "message": f"Successfully processed {len(keys)} files",
        "files": keys,
    })


# --- Admin: FTP ---

def _server_status(config: FTPServerConfig, running: bool) -> dict:
    return {
        "running": running,
        "host": config.host,
        "port": config.port,
        "username": config.username,
        "connectionUrl": config.connection_url,
    }


@api.route('/admin/ftp/server', methods=['GET'])
@require_admin
def ftp_server_status():
    svc = services()
    server = svc.registry.current()
    if server is not None:
        return jsonify(_server_status(server.config, True))
    try:
        return jsonify(_server_status(FTPServerConfig.from_config(svc.config), False))
    except ConfigurationError:
        return jsonify({"running": False, "configured": False})


@api.route('/admin/ftp/server', methods=['POST'])
@require_admin
def ftp_server_control():
    svc = services()
    action = (request.get_json(silent=True) or {}).get('action')

    if action == 'start':
        config = FTPServerConfig.from_config(svc.config)
        provider = svc.provider
        try:
            server = svc.registry.start(config, provider.directory_adapter)
        except OSError as e:
            logger.error("API: FTP server failed to start: %s", e)
            return jsonify({"error": f"Failed to start FTP server: {e}"}), 500
        status = _server_status(server.config, True)
        status["message"] = "FTP server started successfully"
        return jsonify(status)

    if action == 'stop':
        svc.registry.stop()
        return jsonify({"message": "FTP server stopped successfully"})

    return jsonify({"error": "Invalid action"}), 400


def _remote_config() -> RemoteTransferConfig:
    config = services().config
    if not config.remote_ftp_configured:
        raise ConfigurationError("FTP not configured")
    return RemoteTransferConfig.from_config(config)


@api.route('/admin/ftp/list', methods=['GET'])
@require_admin
def ftp_list():
    remote_path = request.args.get('path') or services().config.ftp_remote_path
    try:
        remote = _remote_config()
    except ConfigurationError as e:
        return jsonify({"error": str(e)}), 400

    with RemoteTransferClient(remote) as client:
        all_files = client.list(remote_path)

    audio_files = [f for f in all_files if is_audio_file(f.name)]
    return jsonify({
        "success": True,
        "path": remote_path,
        "files": [f.to_dict() for f in audio_files],
        "totalFiles": len(all_files),
        "audioFiles": len(audio_files),
    })


@api.route('/admin/ftp/download', methods=['POST'])
@require_admin
def ftp_download():
    files = (request.get_json(silent=True) or {}).get('files') or []
    if not files:
        return jsonify({"error": "No files selected"}), 400
    try:
        remote = _remote_config()
    except ConfigurationError as e:
        return jsonify({"error": str(e)}), 400

    svc = services()
    provider = svc.provider
    with RemoteTransferClient(remote) as client:
        keys = import_from_remote(client, provider, files, svc.config.temp_dir)

    return jsonify({
        "success": True,
        "message": f"Successfully downloaded {len(keys)} files",
        "files": keys,
    })


# --- App Factory ---

def create_app(config: Optional[BridgeConfig] = None, registry: Optional[ServerRegistry] = None,
               s3_client=None, identity_provider=None,
               download_engine: Optional[DownloadEngine] = None) -> Flask:
    """
    Build the Flask application.

    Args:
        config: Settings; read from the environment when omitted
        registry: FTP server handle; a fresh one when omitted
        s3_client: Pre-built S3 client, mainly for tests
        identity_provider: Object with ``get_user(token)``; Supabase when configured
        download_engine: Backend for the torrent import endpoint
    """
    config = config or BridgeConfig.from_env()
    if identity_provider is None and config.supabase_url and config.supabase_anon_key:
        identity_provider = SupabaseIdentityProvider(config.supabase_url, config.supabase_anon_key)

    app = Flask(__name__)
    CORS(app, expose_headers=["Content-Range", "Content-Length", "Accept-Ranges"])
    app.config["BRIDGE"] = config
    app.extensions["audio_bridge"] = BridgeServices(
        config, registry or ServerRegistry(), s3_client, download_engine
    )
    app.extensions["identity_provider"] = identity_provider
    app.register_blueprint(api)
    return app


def start_api(host: str = "0.0.0.0", port: int = 5005, debug: bool = False,
              config: Optional[BridgeConfig] = None) -> None:
    app = create_app(config)
    logger.info("API: Starting HTTP server on %s:%s", host, port)
    try:
        app.run(host=host, port=port, debug=debug, threaded=True)
    finally:
        app.extensions["audio_bridge"].registry.stop()
