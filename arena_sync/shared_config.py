import json
import os
import sys
from pathlib import Path


PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = Path(os.getenv("ARENA_CONFIG_DIR", str(PROJECT_ROOT / "config")))
PROFILE_FILE_NAME = "deploy.profile.json"
ALLOWED_PROFILES = {"local", "remote"}

DEFAULTS = {
    "RELAY_WS_URL": "ws://127.0.0.1:42660/ws",
    "RELAY_HOST": "0.0.0.0",
    "RELAY_PORT": 42660,
    "HEARTBEAT_SECONDS": 20.0,
    "CONNECT_TIMEOUT_SECONDS": 10.0,
    "PEER_ID_SPACE": 1000000,
}

CLIENT_KEYS = ["RELAY_WS_URL", "HEARTBEAT_SECONDS", "CONNECT_TIMEOUT_SECONDS", "PEER_ID_SPACE"]
RELAY_KEYS = ["RELAY_HOST", "RELAY_PORT"]


def _read_json(path: Path):
    return json.loads(path.read_text(encoding="utf-8"))


def load_profile_name(config_dir=None):
    profile_file = Path(config_dir or CONFIG_DIR) / PROFILE_FILE_NAME
    if not profile_file.exists():
        raise FileNotFoundError(
            f"Missing profile selector: {profile_file}. "
            "Create config/deploy.profile.json with {\"profile\":\"local\"} or {\"profile\":\"remote\"}."
        )
    payload = _read_json(profile_file)
    profile = payload.get("profile") if isinstance(payload, dict) else None
    if not isinstance(profile, str) or profile not in ALLOWED_PROFILES:
        raise ValueError(
            f"Invalid profile in {profile_file}. "
            f"Expected one of {sorted(ALLOWED_PROFILES)}, got {profile!r}."
        )
    return profile


def load_deploy_config(required_keys=None, config_dir=None):
    config_dir = Path(config_dir or CONFIG_DIR)
    profile = load_profile_name(config_dir)
    deploy_file = config_dir / f"deploy.{profile}.json"
    if not deploy_file.exists():
        raise FileNotFoundError(f"Missing deploy config file: {deploy_file}")

    payload = _read_json(deploy_file)
    if not isinstance(payload, dict):
        raise ValueError(f"Deploy config must be a JSON object: {deploy_file}")

    if required_keys:
        missing = [key for key in required_keys if key not in payload]
        if missing:
            raise ValueError(
                f"Missing keys in {deploy_file}: {', '.join(missing)}"
            )
    return payload


def _coerce(key, value):
    default = DEFAULTS[key]
    try:
        if isinstance(default, int):
            return int(value)
        if isinstance(default, float):
            return float(value)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid value for {key}: {value!r}") from None
    return str(value)


def _load_settings(keys, config_dir=None):
    config_dir = Path(config_dir or CONFIG_DIR)
    if (config_dir / PROFILE_FILE_NAME).exists():
        payload = load_deploy_config(config_dir=config_dir)
    else:
        payload = {}
    settings = {}
    for key in keys:
        value = os.getenv(key)
        if value is None:
            value = payload.get(key, DEFAULTS[key])
        settings[key] = _coerce(key, value)
    return settings


def load_client_settings(config_dir=None):
    return _load_settings(CLIENT_KEYS, config_dir)


def load_relay_settings(config_dir=None):
    return _load_settings(RELAY_KEYS, config_dir)


def save_profile_name(profile, config_dir=None):
    profile = profile.strip()
    if profile not in ALLOWED_PROFILES:
        raise ValueError(f"Invalid profile '{profile}'. Expected one of: {', '.join(sorted(ALLOWED_PROFILES))}")
    profile_path = Path(config_dir or CONFIG_DIR) / PROFILE_FILE_NAME
    profile_path.parent.mkdir(parents=True, exist_ok=True)
    profile_path.write_text(json.dumps({"profile": profile}, indent=2) + "\n", encoding="utf-8")
    return profile_path


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        raise SystemExit("Usage: arena-profile <local|remote>")
    try:
        profile_path = save_profile_name(argv[0])
    except ValueError as exc:
        raise SystemExit(str(exc)) from None
    print(f"deploy profile set to '{argv[0].strip()}' at {profile_path}")


if __name__ == "__main__":
    main()
