import io
import logging
from datetime import datetime

from flask import Flask, Response, current_app, jsonify, request, send_file
from flask_cors import CORS

from . import config
from .reels_engine import (
    CodecEngineAdapter,
    ConversionFailed,
    ConversionSession,
    InvalidTransition,
    NotFound,
    NotReady,
    RenderParams,
    RunInProgress,
    Upload,
    ValidationError,
)
from .reels_engine.intake import validate_upload
from .reels_engine.schemas import Kind

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL.upper(), logging.INFO), format=config.LOG_FORMAT)
logger = logging.getLogger(__name__)


def _session() -> ConversionSession:
    return current_app.extensions["reels_session"]


def _adapter() -> CodecEngineAdapter:
    return current_app.extensions["reels_adapter"]


def _upload_from(file) -> Upload:
    return Upload(filename=file.filename or "", content_type=file.mimetype or "", data=file.read())


def create_app(test_config=None, adapter=None):
    """Build the Flask app with its own conversion session.

    The single-shot endpoint and the batch session share one codec adapter, so
    every ffmpeg run in the process goes through the same engine lock.
    """
    app = Flask(__name__)
    app.config["MAX_CONTENT_LENGTH"] = config.MAX_REQUEST_BYTES
    if test_config:
        app.config.update(test_config)

    CORS(
        app,
        origins=config.CORS_ORIGINS,
        supports_credentials=True,
        allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
        methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    )

    adapter = adapter or CodecEngineAdapter()
    app.extensions["reels_adapter"] = adapter
    app.extensions["reels_session"] = ConversionSession(adapter=adapter)

    _register_routes(app)
    _register_error_handlers(app)
    return app


def _register_routes(app: Flask) -> None:
    @app.route("/", methods=["GET"])
    def health_check():
        """Health check endpoint"""
        return (
            jsonify(
                {
                    "status": "healthy",
                    "message": "Reels converter API is running",
                    "engine_ready": _adapter().ready,
                    "timestamp": datetime.now().isoformat(),
                }
            ),
            200,
        )

    # ------------------ Batch jobs ------------------
    @app.route("/api/jobs", methods=["POST"])
    def upload_images():
        files = request.files.getlist("images")
        if not files:
            return jsonify({"error": "No images provided"}), 400

        result = _session().ingest(_upload_from(f) for f in files)
        return jsonify(
            {
                "message": f"Processed {len(files)} files",
                "accepted": [job.to_dict() for job in result.accepted],
                "errors": [r.to_dict() for r in result.rejected],
            }
        ), (201 if result.accepted else 400)

    @app.route("/api/jobs", methods=["GET"])
    def list_jobs():
        session = _session()
        return jsonify(
            {
                "jobs": [job.to_dict() for job in session.registry.list()],
                "is_converting": session.orchestrator.is_running,
                "progress": session.orchestrator.progress().to_dict(),
                "duration": session.orchestrator.duration,
            }
        ), 200

    @app.route("/api/jobs/<job_id>", methods=["GET"])
    def get_job(job_id: str):
        return jsonify(_session().registry.get(job_id).to_dict()), 200

    @app.route("/api/jobs/<job_id>", methods=["DELETE"])
    def delete_job(job_id: str):
        job = _session().results.remove_and_release(job_id)
        return jsonify({"message": f"Removed {job.source_name}", "id": job.id}), 200

    @app.route("/api/jobs", methods=["DELETE"])
    def clear_jobs():
        report = _session().results.clear_all_and_release()
        return jsonify(
            {
                "message": "All jobs cleared",
                "released": report.released,
                "failures": [{"id": job_id, "error": err} for job_id, err in report.failures],
            }
        ), 200

    @app.route("/api/jobs/run", methods=["POST"])
    def run_jobs():
        session = _session()
        pending = len(session.registry.eligible())
        if pending == 0:
            return jsonify({"error": "No pending jobs to convert"}), 400
        session.orchestrator.start()
        return jsonify({"message": "Conversion started", "pending": pending}), 202

    @app.route("/api/jobs/<job_id>/download", methods=["GET"])
    def download_job(job_id: str):
        download = _session().results.get_downloadable(job_id)
        return send_file(
            io.BytesIO(download.data),
            mimetype=download.mimetype,
            as_attachment=True,
            download_name=download.filename,
        )

    @app.route("/api/settings", methods=["GET"])
    def get_settings():
        return jsonify(_settings_payload()), 200

    @app.route("/api/settings", methods=["PUT"])
    def update_settings():
        data = request.get_json(silent=True) or {}
        if "duration" not in data:
            return jsonify({"error": "duration is required"}), 400
        try:
            _session().orchestrator.set_duration(data["duration"])
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify(_settings_payload()), 200

    @app.route("/media/<token>", methods=["GET"])
    def get_media(token: str):
        data, handle = _session().store.resolve(token)
        return send_file(
            io.BytesIO(data),
            mimetype=handle.mimetype,
            as_attachment=False,
            download_name="video.mp4" if handle.kind is Kind.OUTPUT else None,
        )

    # ------------------ Single-shot ------------------
    @app.route("/api/convert", methods=["POST"])
    def convert_single():
        """Convert one uploaded image synchronously and stream back the MP4."""
        file = request.files.get("image")
        if file is None:
            return jsonify({"error": "No image uploaded"}), 400
        try:
            upload = _upload_from(file)
            validate_upload(upload)
            duration = config.normalize_duration(request.form.get("duration", config.SINGLE_SHOT_DURATION))
        except ValidationError as e:
            return jsonify({"error": e.reason}), 400
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        try:
            video = _adapter().convert(upload.data, RenderParams(duration_sec=duration))
        except ConversionFailed as e:
            logger.error(f"Video generation failed: {e.cause}")
            return Response("Video generation failed", status=500, mimetype="text/plain")

        return Response(
            video,
            mimetype="video/mp4",
            headers={"Content-Disposition": 'inline; filename="output.mp4"'},
        )


def _settings_payload() -> dict:
    orchestrator = _session().orchestrator
    return {
        "duration": orchestrator.duration,
        "min": config.MIN_DURATION,
        "max": config.MAX_DURATION,
        "step": config.DURATION_STEP,
        "disabled": orchestrator.is_running,
    }


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(NotFound)
    def not_found_error(e):
        return jsonify({"error": str(e)}), 404

    @app.errorhandler(NotReady)
    def not_ready(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(RunInProgress)
    def run_in_progress(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(InvalidTransition)
    def invalid_transition(e):
        return jsonify({"error": str(e)}), 409

    @app.errorhandler(413)
    def too_large(e):
        return (
            jsonify({"error": "File too large", "max_size_mb": config.MAX_REQUEST_BYTES / (1024 * 1024)}),
            413,
        )

    @app.errorhandler(404)
    def not_found(e):
        return jsonify({"error": "Endpoint not found"}), 404

    @app.errorhandler(500)
    def internal_error(e):
        return jsonify({"error": "Internal server error"}), 500


app = create_app()


if __name__ == "__main__":
    app.run(host="0.0.0.0", port=config.PORT)
