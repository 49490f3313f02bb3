"""HTTP routes for RangeClip."""

import json
import logging
import time
from pathlib import Path

from flask import Blueprint, Response, current_app, jsonify, request

from rangeclip.engine import BatchFinished, JobFinished, JobProgress, JobStarted
from rangeclip.errors import (
    AlreadyRunningError,
    NotConfiguredError,
    NotFoundError,
    RangeClipError,
    RangeError,
    UnreadableError,
)
from rangeclip.models import EngineState, VideoRef

logger = logging.getLogger(__name__)

bp = Blueprint("web", __name__)

_STATUS_FOR = (
    (NotFoundError, 404),
    (AlreadyRunningError, 409),
    (NotConfiguredError, 409),
    (UnreadableError, 422),
    (RangeError, 400),
)


def _session():
    return current_app.config["SESSION"]


def _lock():
    return current_app.config["SESSION_LOCK"]


def _events() -> list[dict]:
    return current_app.config["EXPORT_EVENTS"]


@bp.errorhandler(RangeClipError)
def handle_domain_error(error: RangeClipError):
    status = next((code for cls, code in _STATUS_FOR if isinstance(error, cls)), 400)
    body = {"error": str(error), "kind": type(error).__name__}
    if isinstance(error, RangeError) and error.range_id is not None:
        body["range_id"] = error.range_id
    return jsonify(body), status


@bp.errorhandler(ValueError)
def handle_bad_value(error: ValueError):
    return jsonify({"error": str(error)}), 400


def _video_dict(video: VideoRef) -> dict:
    return {
        "id": video.id,
        "name": video.path.name,
        "duration": video.duration,
        "fps": float(video.fps),
        "fps_fraction": str(video.fps),
        "frame_count": video.frame_count,
        "width": video.width,
        "height": video.height,
        "kind": video.kind.value,
    }


def _timeline_dict() -> dict:
    tl = _session().timeline
    return {
        "time": tl.time,
        "frame": tl.frame_index,
        "duration": tl.duration,
        "state": tl.state.value,
        "stop_at": tl.stop_at,
    }


def _ranges_dict() -> dict:
    session = _session()
    video = session.active
    if video is None:
        raise NotFoundError("no video selected")
    issues = session.issues()
    return {
        "video": video.id,
        "selected": session.store.selected(video.id),
        "ranges": [
            dict(r.to_dict(), issues=[str(p) for p in issues.get(r.id, [])])
            for r in session.store.list(video.id)
        ],
    }


def _event_dict(event: object) -> dict:
    if isinstance(event, JobStarted):
        return {"event": "job_started", "job_id": event.job_id, "output_stem": event.output_stem}
    if isinstance(event, JobProgress):
        return {"event": "job_progress", "job_id": event.job_id, "progress": round(event.fraction, 3)}
    if isinstance(event, JobFinished):
        return dict(event.outcome.to_dict(), event="job_finished")
    if isinstance(event, BatchFinished):
        return dict(event.result.to_dict(), event="batch_finished")
    return {"event": type(event).__name__}


def _drain() -> None:
    """Move pending engine events into the current batch history. Caller holds the lock."""
    _events().extend(_event_dict(e) for e in _session().poll_events())


def _payload() -> dict:
    return request.get_json(silent=True) or {}


def _number(data: dict, key: str, cast, default=None):
    value = data.get(key, default)
    try:
        return cast(value)
    except (TypeError, ValueError, OverflowError):
        raise ValueError(f"'{key}' must be a number, got {value!r}") from None


def _pair(value, name: str) -> tuple[float, float]:
    try:
        a, b = value
        return float(a), float(b)
    except (TypeError, ValueError):
        raise ValueError(f"'{name}' must be a pair of numbers") from None


@bp.route("/")
def index():
    return jsonify({"name": "RangeClip", "api": "/api"})


# --- folders & videos -----------------------------------------------------

@bp.route("/api/folders", methods=["GET", "POST"])
def folders():
    session = _session()
    with _lock():
        if request.method == "POST":
            data = _payload()
            if data.get("output"):
                session.set_output_folder(data["output"])
            if data.get("input"):
                session.set_input_folder(data["input"])
        settings = session.settings
        return jsonify({
            "input": str(settings.input_folder) if settings.input_folder else None,
            "output": str(settings.output_folder) if settings.output_folder else None,
        })


@bp.route("/api/videos")
def list_videos():
    with _lock():
        videos = _session().list_videos()
    return jsonify({"videos": [p.name for p in videos]})


@bp.route("/api/videos/select", methods=["POST"])
def select_video():
    data = _payload()
    if not data.get("path"):
        return jsonify({"error": "No path provided"}), 400
    with _lock():
        video = _session().load_video(Path(data["path"]))
        return jsonify({"video": _video_dict(video), "timeline": _timeline_dict()})


# --- ranges ---------------------------------------------------------------

@bp.route("/api/ranges", methods=["GET"])
def get_ranges():
    with _lock():
        return jsonify(_ranges_dict())


@bp.route("/api/ranges", methods=["POST"])
def create_range():
    data = _payload()
    with _lock():
        range_id = _session().new_range(label=data.get("label"))
        body = _ranges_dict()
    body["created"] = range_id
    return jsonify(body), 201


@bp.route("/api/ranges/save", methods=["POST"])
def save_ranges():
    data = _payload()
    with _lock():
        path = _session().save_ranges(data.get("path"))
    return jsonify({"saved": str(path)})


@bp.route("/api/ranges/load", methods=["POST"])
def load_ranges():
    data = _payload()
    if not data.get("path"):
        return jsonify({"error": "No path provided"}), 400
    with _lock():
        session = _session()
        created = session.load_ranges(data["path"])
        body = _ranges_dict()
        body["video_info"] = _video_dict(session.active)
    body["loaded"] = len(created)
    return jsonify(body)


@bp.route("/api/ranges/<int:range_id>", methods=["PATCH"])
def update_range(range_id: int):
    data = _payload()
    unknown = set(data) - {"start", "end", "label", "crop"}
    if unknown:
        return jsonify({"error": f"Unknown fields: {sorted(unknown)}"}), 400

    with _lock():
        session = _session()
        video = session.active
        if video is None:
            raise NotFoundError("no video selected")
        session.store.update_many(video.id, range_id, data)
        return jsonify(_ranges_dict())


@bp.route("/api/ranges/<int:range_id>", methods=["DELETE"])
def delete_range(range_id: int):
    with _lock():
        session = _session()
        if session.active is None:
            raise NotFoundError("no video selected")
        session.store.delete(session.active.id, range_id)
        return jsonify(_ranges_dict())


@bp.route("/api/ranges/<int:range_id>/select", methods=["POST"])
def select_range(range_id: int):
    with _lock():
        session = _session()
        if session.active is None:
            raise NotFoundError("no video selected")
        session.store.select(session.active.id, range_id)
        return jsonify(_ranges_dict())


@bp.route("/api/ranges/<int:range_id>/move", methods=["POST"])
def move_range(range_id: int):
    data = _payload()
    if "index" not in data:
        return jsonify({"error": "Provide 'index'"}), 400
    with _lock():
        session = _session()
        if session.active is None:
            raise NotFoundError("no video selected")
        session.store.move(session.active.id, range_id, _number(data, "index", int))
        return jsonify(_ranges_dict())


@bp.route("/api/ranges/<int:range_id>/preview", methods=["POST"])
def preview_range(range_id: int):
    with _lock():
        _session().preview(range_id)
        return jsonify(_timeline_dict())


# --- timeline & crop ------------------------------------------------------

@bp.route("/api/timeline")
def timeline():
    with _lock():
        return jsonify(_timeline_dict())


@bp.route("/api/timeline/seek", methods=["POST"])
def seek():
    data = _payload()
    with _lock():
        tl = _session().timeline
        if "frame" in data:
            tl.seek_frame(_number(data, "frame", int))
        elif "time" in data:
            tl.seek(_number(data, "time", float))
        else:
            return jsonify({"error": "Provide 'time' or 'frame'"}), 400
        return jsonify(_timeline_dict())


@bp.route("/api/timeline/step", methods=["POST"])
def step():
    direction = _number(_payload(), "direction", int, default=1)
    with _lock():
        _session().timeline.step(direction)
        return jsonify(_timeline_dict())


@bp.route("/api/timeline/play", methods=["POST"])
def toggle_play():
    with _lock():
        _session().timeline.toggle_play()
        return jsonify(_timeline_dict())


@bp.route("/api/timeline/advance", methods=["POST"])
def advance():
    dt = _number(_payload(), "dt", float, default=0.0)
    with _lock():
        _session().timeline.advance(dt)
        return jsonify(_timeline_dict())


@bp.route("/api/timeline/mark", methods=["POST"])
def mark():
    which = _payload().get("which")
    if which not in ("in", "out"):
        return jsonify({"error": "'which' must be 'in' or 'out'"}), 400
    with _lock():
        session = _session()
        if which == "in":
            session.mark_in()
        else:
            session.mark_out()
        return jsonify(_ranges_dict())


@bp.route("/api/crop", methods=["POST"])
def set_crop():
    data = _payload()
    start = _pair(data.get("start"), "start")
    end = _pair(data.get("end"), "end")
    rendered = _pair(data.get("rendered"), "rendered")
    origin = _pair(data.get("origin", (0, 0)), "origin")
    with _lock():
        rect = _session().set_crop_from_drag(
            start, end, rendered, origin, range_id=data.get("range_id")
        )
        body = _ranges_dict()
    body["crop"] = rect.to_dict() if rect else None
    return jsonify(body)


# --- export ---------------------------------------------------------------

@bp.route("/api/export", methods=["POST"])
def start_export():
    data = _payload()
    with _lock():
        session = _session()
        if session.engine.state is EngineState.RUNNING:
            raise AlreadyRunningError("an export batch is already running")
        _drain()
        # A fresh list per batch; open streams keep reading the old one.
        current_app.config["EXPORT_EVENTS"] = []
        jobs = session.run_export(all_videos=bool(data.get("all_videos", False)))
    logger.info("Export started with %d job(s)", len(jobs))
    return jsonify({"status": "started", "jobs": len(jobs)})


@bp.route("/api/export/cancel", methods=["POST"])
def cancel_export():
    with _lock():
        cancelled = _session().cancel_export()
    if not cancelled:
        return jsonify({"error": "No export in progress"}), 409
    return jsonify({"status": "cancelling"})


@bp.route("/api/export/status")
def export_status():
    with _lock():
        _drain()
        engine = _session().engine
        result = engine.result
        resp = {"state": engine.state.value, "events": len(_events())}
        if result is not None:
            resp["result"] = result.to_dict()
    return jsonify(resp)


@bp.route("/api/export/progress")
def progress_stream():
    app = current_app._get_current_object()
    with _lock():
        _drain()
        idle = _session().engine.state is EngineState.IDLE
        history = _events()
    if idle:
        return jsonify({"error": "No export has been started"}), 409

    interval = app.config["PROGRESS_POLL_INTERVAL"]

    def generate():
        cursor = 0
        while True:
            with app.config["SESSION_LOCK"]:
                with app.app_context():
                    _drain()
                pending = history[cursor:]
                cursor = len(history)
            for item in pending:
                yield f"data: {json.dumps(item)}\n\n"
                if item["event"] == "batch_finished":
                    return
            time.sleep(interval)

    return Response(generate(), mimetype="text/event-stream")
