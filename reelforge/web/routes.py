"""Web API routes for ReelForge."""

import json
import logging
import queue
import threading
import uuid
from pathlib import Path

from flask import (
    Blueprint,
    Response,
    current_app,
    jsonify,
    request,
    send_file,
)

from reelforge import ffutil
from reelforge.engine import render
from reelforge.errors import RenderError
from reelforge.manifest import config_from_dict

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

# In-memory job store: job_id -> job dict
_jobs: dict[str, dict] = {}

_ACTIVE = ("processing",)

# Guards the status check-and-set that starts a render
_jobs_lock = threading.Lock()


def _job_or_404(job_id: str):
    job = _jobs.get(job_id)
    if job is None:
        return None, (jsonify({"error": "Job not found"}), 404)
    return job, None


@bp.route("/api/health")
def health():
    """Report whether this host can render at all."""
    settings = current_app.config["RENDER_SETTINGS"]
    try:
        ffutil.check_ffmpeg()
        ffutil.check_encoders(settings.video_codec, settings.audio_codec)
    except RenderError as e:
        return jsonify({"ok": False, "error": str(e), "category": e.category}), 503
    return jsonify({
        "ok": True,
        "output": {
            "width": settings.width,
            "height": settings.height,
            "fps": settings.fps,
            "video_codec": settings.video_codec,
            "audio_codec": settings.audio_codec,
        },
    })


@bp.route("/api/upload", methods=["POST"])
def upload():
    if "file" not in request.files:
        return jsonify({"error": "No file provided"}), 400

    f = request.files["file"]
    if not f.filename:
        return jsonify({"error": "Empty filename"}), 400

    job_id = uuid.uuid4().hex[:12]
    job_dir = Path(current_app.config["WORK_DIR"]) / job_id
    job_dir.mkdir(parents=True, exist_ok=True)

    ext = Path(f.filename).suffix or ".mp4"
    input_path = job_dir / f"input{ext}"
    f.save(input_path)

    overlay_path = None
    overlay = request.files.get("overlay")
    if overlay is not None and overlay.filename:
        overlay_path = job_dir / f"overlay{Path(overlay.filename).suffix or '.png'}"
        overlay.save(overlay_path)

    _jobs[job_id] = {
        "dir": job_dir,
        "input_path": input_path,
        "overlay_path": overlay_path,
        "filename": f.filename,
        "status": "uploaded",
        "progress": 0.0,
    }

    return jsonify({
        "job_id": job_id,
        "filename": f.filename,
        "has_overlay": overlay_path is not None,
    })


@bp.route("/api/jobs/<job_id>/render", methods=["POST"])
def start_render(job_id: str):
    job, error = _job_or_404(job_id)
    if error:
        return error

    # ConfigError becomes a 400 through the app's RenderError handler
    config = config_from_dict(request.get_json(silent=True) or {})
    settings = current_app.config["RENDER_SETTINGS"]

    output_path = job["dir"] / "output.mp4"
    progress_queue: queue.Queue = queue.Queue()
    cancel_event = threading.Event()
    with _jobs_lock:
        if job["status"] in _ACTIVE:
            return jsonify({"error": f"Job is already {job['status']}"}), 409
        job.update(
            progress_queue=progress_queue,
            cancel_event=cancel_event,
            status="processing",
            progress=0.0,
            error=None,
            category=None,
        )

    def run():
        try:
            def on_progress(percent: float):
                job["progress"] = round(percent, 1)
                progress_queue.put({"progress": job["progress"]})

            result = render(
                job["input_path"],
                overlay=job["overlay_path"],
                config=config,
                on_progress=on_progress,
                settings=settings,
                cancel_event=cancel_event,
            )
            result.save(output_path)
            job["result"] = {
                "output_path": str(output_path),
                "duration": result.duration,
                "frame_count": result.frame_count,
                "segments": len(result.segments),
                "mime_type": result.mime_type,
            }
            job["status"] = "done"
        except RenderError as e:
            job["status"] = "cancelled" if e.category == "cancelled" else "error"
            job["error"] = str(e)
            job["category"] = e.category
        except Exception as e:
            logger.exception("Render job %s crashed", job_id)
            job["status"] = "error"
            job["error"] = str(e)
            job["category"] = "internal"
        finally:
            progress_queue.put(None)  # sentinel

    threading.Thread(target=run, daemon=True).start()
    return jsonify({"status": "started"})


@bp.route("/api/jobs/<job_id>/cancel", methods=["POST"])
def cancel_render(job_id: str):
    job, error = _job_or_404(job_id)
    if error:
        return error

    if job["status"] not in _ACTIVE:
        return jsonify({"error": "Job is not running"}), 409

    job["cancel_event"].set()
    return jsonify({"status": "cancelling"})


@bp.route("/api/jobs/<job_id>/progress")
def progress_stream(job_id: str):
    job, error = _job_or_404(job_id)
    if error:
        return error

    q = job.get("progress_queue")
    if q is None:
        return jsonify({"error": "No render in progress"}), 409

    def generate():
        while True:
            try:
                msg = q.get(timeout=120)
            except queue.Empty:
                yield "data: {\"error\": \"timeout\"}\n\n"
                break
            if msg is None:
                if job["status"] == "done":
                    data = json.dumps({
                        "stage": "complete",
                        "progress": 100.0,
                        "result": job.get("result"),
                    })
                else:
                    data = json.dumps({"error": job["error"], "category": job["category"]})
                yield f"data: {data}\n\n"
                break
            yield f"data: {json.dumps(msg)}\n\n"

    return Response(generate(), mimetype="text/event-stream")


@bp.route("/api/jobs/<job_id>/result")
def download_result(job_id: str):
    job, error = _job_or_404(job_id)
    if error:
        return error

    if job["status"] != "done":
        return jsonify({"error": "Job not complete"}), 409

    output_path = Path(job["result"]["output_path"])
    return send_file(output_path, mimetype=job["result"]["mime_type"], as_attachment=False)


@bp.route("/api/jobs/<job_id>/status")
def job_status(job_id: str):
    job, error = _job_or_404(job_id)
    if error:
        return error

    resp = {
        "status": job["status"],
        "filename": job.get("filename"),
        "progress": job.get("progress", 0.0),
    }
    if job["status"] == "done":
        resp["result"] = job.get("result")
    if job["status"] in ("error", "cancelled"):
        resp["error"] = job.get("error")
        resp["category"] = job.get("category")
    return jsonify(resp)
