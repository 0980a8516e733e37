import os, logging, yaml
log = logging.getLogger(__name__)
def state_path_for(agent_dir: str) -> str:
    base = os.getenv("DEVLINK_STATE_DIR") or os.path.join(agent_dir, "state")
    os.makedirs(base, exist_ok=True)
    return os.path.join(base, "device_state.yaml")
def load_state(path: str) -> dict:
    if not os.path.exists(path): return {}
    try:
        with open(path,"r") as f: st = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        log.warning("[provision] ignoring unreadable state %s: %s", path, e); return {}
    return st if isinstance(st, dict) else {}
def save_state(path: str, state: dict):
    tmp = path + ".tmp"
    with open(tmp,"w") as f: yaml.safe_dump(state, f, sort_keys=False)
    os.replace(tmp, path)
def load_config(cfg_path: str | None) -> dict:
    if not cfg_path or not os.path.exists(cfg_path): return {}
    with open(cfg_path,"r") as f: cfg = yaml.safe_load(f) or {}
    return cfg if isinstance(cfg, dict) else {}
def _as_link_id(v) -> int | None:
    if v is None or v == "": return None
    return int(v)
def initial_device_link_id(agent_dir: str, cfg: dict, cli_device_link_id: int | None) -> int | None:
    """CLI beats persisted state beats config. The id may be stale; reconciliation decides."""
    if cli_device_link_id is not None:
        persist(agent_dir, cli_device_link_id); return cli_device_link_id
    st = load_state(state_path_for(agent_dir))
    if st.get("device_link_id") is not None: return _as_link_id(st["device_link_id"])
    did = _as_link_id(cfg.get("device_link_id"))
    if did is not None: persist(agent_dir, did)
    return did
def persist(agent_dir: str, device_link_id: int | None):
    sp = state_path_for(agent_dir); st = load_state(sp); st["device_link_id"] = device_link_id; save_state(sp, st)
    log.info("[provision] persisted device_link_id=%s -> %s", device_link_id, sp)
