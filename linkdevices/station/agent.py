import os, sys, asyncio, argparse, logging
from ..common.event_bus import EventBus, LOADING, DEVICE_LINK, CONFIRMED, FAILED
from ..common.identity import DeviceLinkReconciler
from ..common.links import MemoryLinkStore, MqttLinkStore
from ..common.mqtt_helper import MqttClient
from ..common.provisioning import initial_device_link_id, load_config, persist
from ..common.watch import Watched

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Register this station as a Device link if it is not known yet")
    parser.add_argument("--config", default=os.path.join(os.path.dirname(__file__), "device_config.yaml"))
    parser.add_argument("--device-link-id", type=int, default=None)
    parser.add_argument("--container-link-id", type=int, default=None)
    parser.add_argument("--store", choices=("mqtt","memory"), default="mqtt")
    return parser.parse_args(argv)

async def main(argv=None, agent_dir: str | None = None) -> int:
    args = parse_args(argv)
    cfg = load_config(args.config)
    agent_dir = agent_dir or os.path.dirname(__file__)
    container = args.container_link_id if args.container_link_id is not None else cfg.get("container_link_id")
    if container is None:
        print("[station] container_link_id missing (config or --container-link-id)"); return 2
    container = int(container)

    bus = EventBus()
    mq = None
    if args.store == "memory":
        store = MemoryLinkStore(containers=[container])
    else:
        mq = MqttClient.from_config(cfg)
        store = MqttLinkStore(mq, asyncio.get_running_loop(), timeout=float(cfg.get("request_timeout", 5.0)))
        mq.connect()

    watched = Watched(initial_device_link_id(agent_dir, cfg, args.device_link_id))
    print(f"[station] device_link_id = {watched.value} container = {container}")

    def set_device_link_id(link_id):
        persist(agent_dir, link_id)
        watched.set(link_id)
        bus.device_link(link_id)

    reconciler = DeviceLinkReconciler(store, container, set_device_link_id, on_loading_change=bus.loading)
    reconciler.bind(watched)
    waiter = asyncio.create_task(reconciler.wait_confirmed())
    waiter.add_done_callback(bus.settled)
    code = 1
    try:
        while True:
            ev = await bus.next()
            if ev.type == LOADING: print(f"[station] {'registering...' if ev.data['is_loading'] else 'idle'}")
            elif ev.type == DEVICE_LINK: print(f"[station] new device link {ev.data['id']}")
            elif ev.type == CONFIRMED:
                print(f"[station] device link {ev.data['link']['id']} confirmed"); code = 0; break
            elif ev.type == FAILED:
                print(f"[station] reconciliation failed: {ev.data['error']}"); break
    finally:
        await reconciler.close()
        if mq: mq.disconnect()
    return code

def run():
    logging.basicConfig(level=os.getenv("LOG_LEVEL","INFO").upper(),
                        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s")
    sys.exit(asyncio.run(main()))

if __name__ == "__main__":
    run()
