import sqlite3, json, datetime, threading
from contextlib import contextmanager

SCHEMA = """
CREATE TABLE IF NOT EXISTS links(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  type TEXT NOT NULL,
  from_id INTEGER REFERENCES links(id),
  to_id INTEGER REFERENCES links(id),
  value TEXT,
  created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS links_from ON links(from_id, type);
CREATE TABLE IF NOT EXISTS tx_log(
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  ts TEXT NOT NULL,
  client_id TEXT,
  op TEXT NOT NULL,
  link_id INTEGER,
  details TEXT
);
"""

class ContainerNotFound(LookupError):
    pass

class LinkDB:
    def __init__(self, path: str):
        self.conn = sqlite3.connect(path, check_same_thread=False, isolation_level=None)
        self.conn.row_factory = sqlite3.Row
        self.lock = threading.RLock()
        self._init()
    def _init(self):
        with self.lock:
            self.conn.executescript(SCHEMA)
    def now(self): return datetime.datetime.now(datetime.timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")
    @contextmanager
    def tx(self):
        with self.lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.execute("ROLLBACK"); raise
            else:
                self.conn.execute("COMMIT")
    def _link(self, r) -> dict:
        d = dict(r); d["value"] = json.loads(d["value"]) if d["value"] is not None else None
        return d
    def _insert(self, type_: str, value=None, from_id=None, to_id=None) -> int:
        cur = self.conn.execute("INSERT INTO links(type,from_id,to_id,value,created_at) VALUES(?,?,?,?,?)",
                                (type_, from_id, to_id, json.dumps(value) if value is not None else None, self.now()))
        return int(cur.lastrowid)
    def select(self, link_id: int) -> list[dict]:
        with self.lock:
            return [self._link(r) for r in self.conn.execute("SELECT * FROM links WHERE id=? ORDER BY id", (link_id,))]
    def create_container(self, name: str, client_id=None) -> dict:
        with self.tx():
            cid = self._insert("Container", {"name": name})
            self.log("create_container", client_id, cid, {"name": name})
        return self.select(cid)[0]
    def insert_device(self, container_link_id: int, info: dict, client_id=None) -> dict:
        with self.tx():
            c = self.conn.execute("SELECT type FROM links WHERE id=?", (container_link_id,)).fetchone()
            if not c or c["type"] != "Container": raise ContainerNotFound(container_link_id)
            did = self._insert("Device", info)
            self._insert("Contain", None, container_link_id, did)
            self.log("insert_device", client_id, did, {"container_link_id": container_link_id})
        return self.select(did)[0]
    def devices_in(self, container_link_id: int) -> list[dict]:
        with self.lock:
            rows = self.conn.execute("""SELECT d.* FROM links c JOIN links d ON d.id=c.to_id
                                        WHERE c.type='Contain' AND c.from_id=? AND d.type='Device' ORDER BY d.id""", (container_link_id,))
            return [self._link(r) for r in rows]
    def log(self, op, client_id, link_id, details):
        with self.lock:
            self.conn.execute("INSERT INTO tx_log(ts,client_id,op,link_id,details) VALUES(?,?,?,?,?)",
                              (self.now(), client_id, op, link_id, json.dumps(details)))
    def history(self, limit: int = 50) -> list[dict]:
        with self.lock:
            return [dict(r) for r in self.conn.execute("SELECT * FROM tx_log ORDER BY id DESC LIMIT ?", (limit,))]
