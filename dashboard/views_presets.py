from flask import request, jsonify
from flask_login import login_required, current_user
from datetime import datetime
import json
from . import bp
from models import model, SCM_Settings

PRESET_PREFIX = "preset:"


def _row(view):
    return model.query(SCM_Settings).filter_by(
        SettingKey=PRESET_PREFIX + view, UserID=current_user.username
    ).one_or_none()

def load_presets(view):
    row = _row(view)
    if not row:
        return {}
    try:
        presets = json.loads(row.SettingValue)
    except json.JSONDecodeError:
        return {}
    return presets if isinstance(presets, dict) else {}

# save settings per user, one row per view
def save(view, presets):
    row = _row(view)
    if not row:
        row = SCM_Settings(SettingKey=PRESET_PREFIX + view, UserID=current_user.username)
        model.add(row)
    row.SettingValue = json.dumps(presets)
    model.commit()

def _now():
    return datetime.utcnow().isoformat() + "Z"


@bp.route("/presets/<view>", methods=["GET"])
@login_required
def list_presets(view):
    return jsonify(load_presets(view))

@bp.route("/presets/<view>/<name>", methods=["PUT"])
@login_required
def save_preset(view, name):
    data = request.get_json(silent=True) or {}
    name = name.strip()
    filters = data.get("filters")
    if not name:
        return jsonify({"error": "Preset name is required"}), 400
    if not isinstance(filters, dict):
        return jsonify({"error": "filters must be an object"}), 400

    presets = load_presets(view)
    existing = presets.get(name) or {}
    presets[name] = {
        "filters":   filters,
        "createdAt": existing.get("createdAt") or _now(),
        "lastUsed":  existing.get("lastUsed"),
    }
    save(view, presets)
    return jsonify({"success": True, "name": name, "preset": presets[name]})

@bp.route("/presets/<view>/<name>", methods=["GET"])
@login_required
def load_preset(view, name):
    presets = load_presets(view)
    if name not in presets:
        return jsonify({"error": "Preset not found"}), 404
    presets[name]["lastUsed"] = _now()
    save(view, presets)
    return jsonify(presets[name])

@bp.route("/presets/<view>/<name>", methods=["DELETE"])
@login_required
def delete_preset(view, name):
    presets = load_presets(view)
    if name not in presets:
        return jsonify({"error": "Preset not found"}), 404
    del presets[name]
    save(view, presets)
    return jsonify({"success": True})
