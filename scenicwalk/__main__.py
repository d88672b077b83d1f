#!/usr/bin/env python3
"""
Scenic Walk - Group walks with a shared route and the organizer's live position

Usage:
    python -m scenicwalk <command> [options]

Commands:
    create NAME       Create an event (route from --point, --route-file or --draw)
    show ID           Show an event and where the organizer is
    arrows ID         List the direction arrows along an event's route
    map ID            Write the route, arrows and organizer to an HTML map
    broadcast ID      Share your location with participants (organizer)
    watch ID          Follow the organizer's position (participant)
    end ID            End an event and clear the organizer's position
    reactivate ID     Make an ended event active again
    delete ID         Delete an event
    list              List events in the database
    saved             List events saved on this device
    status            Show which event this device is broadcasting
"""

import argparse
import json
import os
import sys
import threading
import time
import webbrowser
from datetime import datetime
from pathlib import Path

from .arrows import ArrowPlanner
from .background import BackgroundBroadcaster, BroadcastController
from .config import CONFIG
from .errors import InvalidRoute, ScenicWalkError
from .events import EventService
from .freshness import describe, freshness, now_ms
from .geo import bearing_to_compass
from .live_map import LiveMapServer, MapClickLocation, draw_route
from .location import FixedLocation, LocationPlayback, LocationRecorder, TermuxLocation
from .logger import Logger
from .map_view import create_event_map
from .models import BroadcastMode, Coordinate, EventStatus, PermissionKind, SavedEvent
from .permissions import PermissionGate, StaticPermissionSource, TermuxPermissionSource
from .route import total_length
from .storage import LocalStore
from .store import FirebaseStore

FATAL_ERRORS = ("PermissionDenied", "EventNotFound", "StoreError", "ScenicWalkError")


def _parse_point(text: str) -> Coordinate:
    try:
        lat, lng = (float(part) for part in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected LAT,LNG but got {text!r}")
    return Coordinate(lat, lng)


def _load_route(path: str) -> list[Coordinate]:
    """Route file: a JSON list of {"lat", "lng"} objects or [lat, lng] pairs"""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise InvalidRoute(f"Could not read route file {path}: {e}") from e
    if isinstance(data, dict):
        data = data.get("route", [])
    route = []
    try:
        for point in data:
            if isinstance(point, dict):
                route.append(Coordinate.from_dict(point))
            else:
                route.append(Coordinate(float(point[0]), float(point[1])))
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise InvalidRoute(f"Bad point in route file {path}: {e}") from e
    return route


def _format_time(ms: int) -> str:
    return datetime.fromtimestamp(ms / 1000).strftime("%Y-%m-%d %H:%M")


def _resolve_pin(args, local: LocalStore) -> str:
    pin = args.pin or local.get_stored_pin(args.event_id)
    if not pin:
        raise ScenicWalkError("No PIN given and none saved on this device (use --pin)")
    return pin


def _draw_route(logger: Logger) -> list[Coordinate]:
    server = LiveMapServer(hint="Click the map to add route points, then press Enter here")
    server.start()
    done = threading.Event()

    def wait_for_enter():
        input("Click the map to draw the route. Press Enter when finished.\n")
        done.set()

    threading.Thread(target=wait_for_enter, daemon=True).start()
    route = draw_route(server, done)
    server.stop()
    logger.log("Route drawn", {"points": len(route), "length": round(total_length(route))})
    return route


def cmd_create(args, events: EventService, local: LocalStore, logger: Logger):
    if args.draw:
        route = _draw_route(logger)
    elif args.route_file:
        route = _load_route(args.route_file)
    else:
        route = args.point or []

    event = events.create_event(args.name, args.pin, route, BroadcastMode(args.mode))
    local.save_event(SavedEvent(event.id, event.name, event.organizer_pin, event.created_at))
    print(f"Created event {event.id}: {event.name}")
    print(f"  {len(event.route)} points, {total_length(event.route):.0f} m, {event.broadcast_mode.value} broadcasting")
    print(f"  Share this code with participants: {event.id}")


def cmd_show(args, events: EventService, local: LocalStore, logger: Logger):
    event = events.get_event(args.event_id)
    planner = ArrowPlanner()
    summary = planner.summary(event.route)
    sample = events.get_location(event.id)

    print(f"{event.name} ({event.id})")
    print(f"  Status:     {event.status.value}")
    print(f"  Created:    {_format_time(event.created_at)}")
    print(f"  Mode:       {event.broadcast_mode.value}")
    print(f"  Route:      {len(event.route)} points, {total_length(event.route):.0f} m")
    if summary:
        print(f"  Arrows:     {summary.count}, every {summary.spacing:.0f} m")
    else:
        print("  Arrows:     none (route too short)")
    print(f"  Organizer:  {describe(sample, now_ms())}")
    if sample:
        print(f"              at {sample.lat:.6f}, {sample.lng:.6f}")


def cmd_arrows(args, events: EventService, local: LocalStore, logger: Logger):
    if args.route_file:
        route = _load_route(args.route_file)
    else:
        route = events.get_event(args.event_id).route
    planner = ArrowPlanner()
    arrows = planner.plan(route)
    summary = planner.summary(route)

    if args.json:
        print(json.dumps({
            "length": total_length(route),
            "summary": summary.as_css() if summary else None,
            "arrows": [
                {"lat": a.position.lat, "lng": a.position.lng,
                 "bearing": round(a.bearing, 1), "distance": round(a.distance, 1)}
                for a in arrows
            ],
        }, indent=2))
        return

    if not arrows:
        print(f"No arrows: route is {total_length(route):.0f} m long")
        return
    print(f"{len(arrows)} arrows every {summary.spacing:.0f} m "
          f"(repeat {summary.as_css()['repeat']}, offset {summary.as_css()['offset']})")
    for i, arrow in enumerate(arrows, 1):
        print(f"  {i:2d}. {arrow.distance:7.1f} m  {arrow.position.lat:.6f}, {arrow.position.lng:.6f}"
              f"  {arrow.bearing:5.1f}° {bearing_to_compass(arrow.bearing)}")


def cmd_map(args, events: EventService, local: LocalStore, logger: Logger):
    event = events.get_event(args.event_id)
    m = create_event_map(event, organizer=events.get_location(event.id), now=now_ms())
    output_file = args.output or f"scenicwalk_{event.id}.html"
    m.save(output_file)
    abs_path = os.path.abspath(output_file)
    print(f"Map saved to: {abs_path}")
    if args.open:
        webbrowser.open(f"file://{abs_path}")


def _make_source(args, server):
    if server is not None:
        return MapClickLocation(server)
    if args.playback:
        if not Path(args.playback).exists():
            raise ScenicWalkError(f"Playback file not found: {args.playback}")
        return LocationPlayback(args.playback, args.speed)
    if args.lat is not None:
        return FixedLocation(args.lat, args.lng)
    return TermuxLocation()


def _print_update(update: dict):
    data = update["data"]
    if update["type"] == "location":
        acc = f" ±{data['accuracy']:.0f} m" if data.get("accuracy") is not None else ""
        print(f"Shared location {data['lat']:.6f}, {data['lng']:.6f}{acc}")
    elif update["type"] == "state":
        print(f"Broadcast {data['state']}")
    elif update["type"] == "error":
        print(f"Error: {data['message']}")


def cmd_broadcast(args, events: EventService, local: LocalStore, logger: Logger):
    event = events.verify_pin(args.event_id, _resolve_pin(args, local))
    if not event.is_active:
        raise ScenicWalkError("Event has ended; reactivate it before broadcasting")
    local.save_event(SavedEvent(event.id, event.name, event.organizer_pin, event.created_at))

    server = None
    if args.live_map:
        server = LiveMapServer(hint="Click the map to move the organizer")
        server.start()
        server.send_route(event.route, event.name)
        logger.callback = server.send_log

    source = _make_source(args, server)
    if args.record:
        source = LocationRecorder(source, args.record)

    simulated = server is not None or args.playback or args.lat is not None
    if simulated or args.deny:
        permissions = StaticPermissionSource(denied={PermissionKind(kind) for kind in args.deny})
    else:
        permissions = TermuxPermissionSource()
    gate = PermissionGate(permissions)

    broadcaster = BackgroundBroadcaster(events, events.store, source, gate, local, logger)
    controller = BroadcastController(broadcaster, local, logger)
    controller.start(event.id, event.name)
    print(f"Broadcasting for {event.name} ({event.broadcast_mode.value}). Press Ctrl+C to stop.")

    failed = False
    try:
        while True:
            time.sleep(CONFIG["update_poll_interval"])
            stopped = False
            for update in controller.poll_updates():
                _print_update(update)
                if update["type"] == "error" and update["data"]["kind"] in FATAL_ERRORS:
                    failed = True
                if update["type"] == "state" and update["data"]["state"] in ("idle", "stopped"):
                    stopped = True
            if server is not None:
                server.send_organizer(controller.last_sample)
            if failed or stopped:
                break
            if event.broadcast_mode is BroadcastMode.MANUAL:
                input("Press Enter to share your location now\n")
                controller.publish_once()
    except (KeyboardInterrupt, EOFError):
        print()
    finally:
        controller.stop()
        broadcaster.shutdown(timeout=5)
        if isinstance(source, LocationRecorder):
            source.save()
        if server is not None:
            server.stop()
    print("Broadcast stopped; participants no longer see your position.")
    if failed:
        sys.exit(1)


def cmd_watch(args, events: EventService, local: LocalStore, logger: Logger):
    event = events.get_event(args.event_id)
    server = None
    if args.live_map:
        server = LiveMapServer(hint=f"Following the organizer of {event.name}")
        server.start()
        server.send_route(event.route, event.name)

    latest = {"sample": None, "status": event.status}

    def on_location(sample):
        latest["sample"] = sample

    def on_event(changed):
        latest["status"] = changed.status if changed else None

    location_sub = events.subscribe_location(event.id, on_location)
    event_sub = events.subscribe_event(event.id, on_event)
    print(f"Watching {event.name}. Press Ctrl+C to stop.")

    last_shown = None
    try:
        while latest["status"] is EventStatus.ACTIVE:
            sample = latest["sample"]
            now = now_ms()
            shown = (freshness(sample, now), sample.timestamp if sample else None)
            if shown != last_shown:
                where = f" at {sample.lat:.6f}, {sample.lng:.6f}" if sample else ""
                print(f"{describe(sample, now)}{where}")
                last_shown = shown
            if server is not None:
                server.send_organizer(sample, now)
            time.sleep(1)
        print("The event has ended." if latest["status"] else "The event was deleted.")
    except KeyboardInterrupt:
        print()
    finally:
        location_sub.cancel()
        event_sub.cancel()
        if server is not None:
            server.stop()


def cmd_end(args, events: EventService, local: LocalStore, logger: Logger):
    events.verify_pin(args.event_id, _resolve_pin(args, local))
    events.end_event(args.event_id)
    print(f"Event {args.event_id} ended.")


def cmd_reactivate(args, events: EventService, local: LocalStore, logger: Logger):
    events.verify_pin(args.event_id, _resolve_pin(args, local))
    events.reactivate_event(args.event_id)
    print(f"Event {args.event_id} is active again.")


def cmd_delete(args, events: EventService, local: LocalStore, logger: Logger):
    events.verify_pin(args.event_id, _resolve_pin(args, local))
    events.delete_event(args.event_id)
    local.remove_event(args.event_id)
    print(f"Event {args.event_id} deleted.")


def cmd_list(args, events: EventService, local: LocalStore, logger: Logger):
    status = EventStatus(args.status) if args.status else None
    found = events.list_events(status)
    if not found:
        print("No events.")
        return
    for event in found:
        print(f"{event.id}  {event.status.value:6s}  {_format_time(event.created_at)}  {event.name}")


def cmd_saved(args, events, local: LocalStore, logger: Logger):
    saved = local.get_events()
    if not saved:
        print("No events saved on this device.")
        return
    for event in saved:
        print(f"{event.id}  PIN {event.pin}  {_format_time(event.created_at)}  {event.name}")


def cmd_status(args, events, local: LocalStore, logger: Logger):
    marker = local.get_broadcasting_event()
    if not marker:
        print("Not broadcasting.")
        return
    event_id, event_name = marker
    print(f"Marked as broadcasting: {event_name or 'Unnamed Event'} ({event_id})")
    if events is not None:
        print(f"  Participants see: {describe(events.get_location(event_id), now_ms())}")


def _needs_store(args) -> bool:
    """Whether a command talks to the real-time database"""
    if args.command == "saved":
        return False
    if args.command == "arrows" and args.route_file:
        return False
    if args.command == "status":
        # Status still works offline, just without the participant view
        return bool(args.database_url or CONFIG["store_url"])
    return True


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="scenicwalk",
        description="Scenic Walk - Group walks with a shared route and live organizer position"
    )
    parser.add_argument("--log", metavar="FILE",
                        help="Log file path (broadcast default: scenicwalk_TIMESTAMP.log)")
    parser.add_argument("--database-url", metavar="URL",
                        help="Realtime database URL (default: $SCENICWALK_DATABASE_URL)")
    parser.add_argument("--storage", metavar="FILE",
                        help=f"On-device database (default: {CONFIG['storage_path']})")
    parser.add_argument("-v", "--verbose", action="store_true",
                        help="Print log lines to the console")
    commands = parser.add_subparsers(dest="command", required=True)

    p = commands.add_parser("create", help="Create an event")
    p.add_argument("name", help="Event name")
    p.add_argument("--pin", required=True, help=f"{CONFIG['pin_length']}-character organizer PIN")
    source = p.add_mutually_exclusive_group(required=True)
    source.add_argument("--point", type=_parse_point, action="append", metavar="LAT,LNG",
                        help="Route point (repeat for each point)")
    source.add_argument("--route-file", metavar="FILE", help="JSON file with the route points")
    source.add_argument("--draw", action="store_true", help="Draw the route on a live map")
    p.add_argument("--mode", choices=[m.value for m in BroadcastMode],
                   default=BroadcastMode.CONTINUOUS.value, help="How the organizer shares location")
    p.set_defaults(func=cmd_create)

    p = commands.add_parser("show", help="Show an event")
    p.add_argument("event_id")
    p.set_defaults(func=cmd_show)

    p = commands.add_parser("arrows", help="List direction arrows along a route")
    p.add_argument("event_id", nargs="?")
    p.add_argument("--route-file", metavar="FILE", help="Plan arrows for a route file instead")
    p.add_argument("--json", action="store_true", help="Print JSON")
    p.set_defaults(func=cmd_arrows)

    p = commands.add_parser("map", help="Write an HTML map of an event")
    p.add_argument("event_id")
    p.add_argument("--output", "-o", metavar="FILE", help="Output HTML file")
    p.add_argument("--open", action="store_true", help="Open the map in a browser")
    p.set_defaults(func=cmd_map)

    p = commands.add_parser("broadcast", help="Share your location as organizer")
    p.add_argument("event_id")
    p.add_argument("--pin", help="Organizer PIN (default: saved on this device)")
    p.add_argument("--record", metavar="FILE", help="Record location trace to JSON file")
    p.add_argument("--playback", metavar="FILE", help="Play back a recorded location trace")
    p.add_argument("--speed", type=float, default=1.0, help="Playback speed multiplier (default: 1.0)")
    p.add_argument("--lat", type=float, metavar="LAT", help="Fixed latitude (testing without GPS)")
    p.add_argument("--lng", type=float, metavar="LNG", help="Fixed longitude (testing without GPS)")
    p.add_argument("--live-map", action="store_true",
                   help="Simulate the organizer by clicking a live map")
    p.add_argument("--deny", action="append", default=[], metavar="PERMISSION",
                   choices=[k.value for k in PermissionKind],
                   help="Simulate a denied permission")
    p.set_defaults(func=cmd_broadcast)

    p = commands.add_parser("watch", help="Follow the organizer as a participant")
    p.add_argument("event_id")
    p.add_argument("--live-map", action="store_true", help="Show the organizer on a live map")
    p.set_defaults(func=cmd_watch)

    for name, func, text in (("end", cmd_end, "End an event"),
                             ("reactivate", cmd_reactivate, "Reactivate an ended event"),
                             ("delete", cmd_delete, "Delete an event")):
        p = commands.add_parser(name, help=text)
        p.add_argument("event_id")
        p.add_argument("--pin", help="Organizer PIN (default: saved on this device)")
        p.set_defaults(func=func)

    p = commands.add_parser("list", help="List events")
    p.add_argument("--status", choices=[s.value for s in EventStatus])
    p.set_defaults(func=cmd_list)

    p = commands.add_parser("saved", help="List events saved on this device")
    p.set_defaults(func=cmd_saved)

    p = commands.add_parser("status", help="Show which event this device is broadcasting")
    p.set_defaults(func=cmd_status)

    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command == "arrows" and not (args.event_id or args.route_file):
        parser.error("arrows needs an event id or --route-file")
    if args.command == "broadcast" and (args.lat is None) != (args.lng is None):
        parser.error("--lat and --lng must be used together")

    log_path = args.log
    if not log_path and args.command == "broadcast":
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        log_path = f"scenicwalk_{timestamp}.log"
    logger = Logger(log_path=log_path, echo=args.verbose)
    local = LocalStore(args.storage)

    try:
        events = None
        if _needs_store(args):
            events = EventService(FirebaseStore(args.database_url, logger=logger), logger)
        args.func(args, events, local, logger)
    except ScenicWalkError as e:
        logger.log("Command failed", {"command": args.command, "error": str(e)})
        print(f"Error: {e}")
        sys.exit(1)
    finally:
        local.close()
        logger.close()


if __name__ == "__main__":
    main()
