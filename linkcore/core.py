import os, json, logging, sqlite3
from contextlib import asynccontextmanager
from fastapi import FastAPI, HTTPException, Request
import paho.mqtt.client as mqtt
from .db import LinkDB, ContainerNotFound

BROKER_HOST=os.getenv("BROKER_HOST","localhost"); BROKER_PORT=int(os.getenv("BROKER_PORT","1883"))
NS=os.getenv("MQTT_NAMESPACE","devlink")
log=logging.getLogger(__name__)

client=mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id="core-01", clean_session=True); client.enable_logger()
db: LinkDB | None = None

def get_db() -> LinkDB:
    global db
    if db is None: db=LinkDB(os.getenv("DB_PATH","/data/core.db"))
    return db

def T(*p): return "/".join([NS]+[str(x) for x in p])
def pub(t,p,qos=1,retain=False): client.publish(t, json.dumps(p,separators=(",",":")), qos=qos, retain=retain)

def on_connect(c,u,f,rc,props=None):
    log.info("[core] mqtt connected rc=%s", rc); c.subscribe(T("core","#"),qos=1)

def on_message(c,u,msg):
    try: p=json.loads(msg.payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        log.warning("[core] unparseable payload on %s", msg.topic); return
    if isinstance(p, dict): handle(msg.topic, p)

def handle(topic, p):
    op = {T("core","links","select"): links_select, T("core","links","insert_device"): links_insert_device}.get(topic)
    if op is None: return
    try: op(p)
    except sqlite3.Error as e:
        log.exception("[core] %s failed", topic)
        respond(p.get("client_id"), {"req_id":p.get("req_id"),"status":"error","error":f"db: {e}"})

def respond(client_id, body):
    if not client_id: log.warning("[core] request %s has no client_id, dropping reply", body.get("req_id")); return
    pub(T("dev",client_id,"res"), body, qos=1, retain=False)

def _int(v):
    try: return int(v)
    except (TypeError, ValueError): return None

def links_select(p):
    r=p.get("req_id"); d=p.get("client_id"); link_id=_int(p.get("link_id"))
    if link_id is None:
        respond(d, {"req_id":r,"type":"links_select","status":"error","error":"bad link_id"}); return
    respond(d, {"req_id":r,"type":"links_select","status":"ok","links":get_db().select(link_id)})

def links_insert_device(p):
    r=p.get("req_id"); d=p.get("client_id"); cid=_int(p.get("container_link_id")); info=p.get("info") or {}
    if cid is None:
        respond(d, {"req_id":r,"type":"links_insert_device","status":"error","error":"bad container_link_id"}); return
    try: link=get_db().insert_device(cid, info, d)
    except ContainerNotFound:
        respond(d, {"req_id":r,"type":"links_insert_device","status":"error","error":"container_not_found"}); return
    log.info("[core] device link %s registered under %s by %s", link["id"], cid, d)
    respond(d, {"req_id":r,"type":"links_insert_device","status":"ok","device_link":link})

def start_mqtt():
    client.on_connect=on_connect; client.on_message=on_message
    client.connect(BROKER_HOST, BROKER_PORT, keepalive=30); client.loop_start()

def stop_mqtt():
    client.disconnect(); client.loop_stop()

@asynccontextmanager
async def lifespan(app: FastAPI):
    get_db(); mqtt_on = os.getenv("MQTT_ENABLED","1") == "1"
    if mqtt_on: start_mqtt()
    try: yield
    finally:
        if mqtt_on: stop_mqtt()

app=FastAPI(title="Link Core",version="1.0.0",lifespan=lifespan)

@app.get("/healthz")
async def healthz(): return {"status":"ok"}

@app.post("/api/containers")
async def api_create_container(req: Request):
    body=await req.json(); name=(body or {}).get("name")
    if not name: raise HTTPException(status_code=422, detail="name required")
    return {"ok":True,"container":get_db().create_container(name, "http")}

@app.get("/api/links/{link_id}")
async def api_link(link_id: int):
    return {"links": get_db().select(link_id)}

@app.get("/api/containers/{link_id}/devices")
async def api_devices(link_id: int):
    if not get_db().select(link_id): raise HTTPException(status_code=404, detail="container not found")
    return {"devices": get_db().devices_in(link_id)}

@app.get("/api/log")
async def api_log(limit: int = 50):
    return {"items": get_db().history(limit)}
