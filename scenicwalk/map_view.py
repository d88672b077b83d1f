"""Static HTML map of an event route with direction arrows."""

from typing import Optional, Sequence

import folium
from folium import plugins

from .arrows import ArrowIconCache, ArrowPlanner
from .freshness import describe, freshness
from .geo import bearing_to_compass
from .models import Coordinate, Freshness, LocationSample, WalkEvent
from .route import RouteProfile

ROUTE_COLOR = "#16a34a"

ORGANIZER_COLORS = {
    Freshness.LIVE: "#2563eb",
    Freshness.STALE: "#9ca3af",
}


def organizer_color(state: Freshness) -> Optional[str]:
    """Marker color for a freshness state; None means draw no marker"""
    if state is Freshness.WAITING:
        return None
    if state is Freshness.LIVE or state is Freshness.STALE:
        return ORGANIZER_COLORS[state]
    raise ValueError(f"Unhandled freshness state: {state}")


def create_map(
    route: Sequence[Coordinate],
    title: str = "Walk route",
    organizer: Optional[LocationSample] = None,
    now: Optional[int] = None,
    planner: Optional[ArrowPlanner] = None,
    icons: Optional[ArrowIconCache] = None,
) -> folium.Map:
    """Create an interactive map with the route, its arrows, and the organizer."""
    if not route:
        raise ValueError("Route has no points")

    planner = planner or ArrowPlanner()
    icons = icons or ArrowIconCache()
    profile = RouteProfile(route)
    arrows = planner.plan(route)
    summary = planner.summary(route)

    center_lat = sum(p.lat for p in route) / len(route)
    center_lng = sum(p.lng for p in route) / len(route)
    m = folium.Map(
        location=[center_lat, center_lng],
        zoom_start=15,
        tiles="CartoDB positron"
    )
    folium.TileLayer("OpenStreetMap", name="OpenStreetMap").add_to(m)
    folium.TileLayer("CartoDB dark_matter", name="Dark Mode").add_to(m)

    route_layer = folium.FeatureGroup(name="Route", show=True)
    arrow_layer = folium.FeatureGroup(name="Direction arrows", show=True)

    coords = [[p.lat, p.lng] for p in route]
    folium.PolyLine(
        coords,
        weight=4,
        color=ROUTE_COLOR,
        opacity=1.0,
        popup=folium.Popup(f"<b>{title}</b><br>{profile.total_length():.0f} m", max_width=200)
    ).add_to(route_layer)

    folium.CircleMarker(
        coords[0], radius=8, color="#ffffff", weight=2,
        fill=True, fill_color=ROUTE_COLOR, fill_opacity=1, popup="Start"
    ).add_to(route_layer)
    if len(coords) > 1:
        folium.CircleMarker(
            coords[-1], radius=8, color="#ffffff", weight=2,
            fill=True, fill_color="#ef4444", fill_opacity=1, popup="Finish"
        ).add_to(route_layer)

    for arrow in arrows:
        folium.Marker(
            [arrow.position.lat, arrow.position.lng],
            icon=folium.DivIcon(html=icons.get(arrow.bearing), icon_size=(22, 22), icon_anchor=(11, 11)),
            tooltip=f"{arrow.distance:.0f} m, heading {bearing_to_compass(arrow.bearing)}",
        ).add_to(arrow_layer)

    route_layer.add_to(m)
    arrow_layer.add_to(m)

    if organizer is not None:
        state = freshness(organizer, now) if now is not None else Freshness.LIVE
        color = organizer_color(state)
        status = describe(organizer, now) if now is not None else ""
        accuracy = f"<br>Accuracy: ±{organizer.accuracy:.0f} m" if organizer.accuracy else ""
        folium.CircleMarker(
            [organizer.lat, organizer.lng], radius=10, color="#ffffff", weight=3,
            fill=True, fill_color=color, fill_opacity=1,
            popup=folium.Popup(f"<b>Organizer</b><br>{status}{accuracy}", max_width=200)
        ).add_to(m)

    folium.LayerControl().add_to(m)

    if summary:
        spacing = f"{summary.count} arrows every {summary.spacing:.0f} m"
    else:
        spacing = "Too short for arrows"
    legend_html = f"""
    <div style="
        position: fixed;
        bottom: 50px;
        left: 50px;
        z-index: 1000;
        background-color: white;
        padding: 10px;
        border-radius: 5px;
        border: 2px solid grey;
        font-family: Arial;
        font-size: 12px;
    ">
        <b>{title}</b><br>
        <hr style="margin: 5px 0">
        Length: {profile.total_length():.0f} m<br>
        Points: {len(route)}<br>
        {spacing}
    </div>
    """
    m.get_root().html.add_child(folium.Element(legend_html))

    plugins.Fullscreen().add_to(m)
    plugins.LocateControl().add_to(m)

    return m


def create_event_map(event: WalkEvent, organizer: Optional[LocationSample] = None,
                     now: Optional[int] = None) -> folium.Map:
    return create_map(event.route, title=event.name, organizer=organizer, now=now)
