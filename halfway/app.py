from flask import Flask, request, jsonify, g, current_app
from flask_cors import CORS
import logging
import math
import threading
import time
import uuid
from dataclasses import dataclass, field
from time import perf_counter
from typing import Callable, Dict, List, Optional

from .config import Settings, settings as default_settings
from .errors import GeocodeFailed
from .maps_service import build_google_service
from .models import Category, Coordinate, Origin
from .osm_service import OpenStreetMapService
from .runner import SessionRunner
from .session import MIN_RADIUS_M, SessionOrchestrator
from . import geo

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(settings: Settings) -> None:
    handlers = [logging.StreamHandler()]
    if settings.LOG_FILE:
        handlers.insert(0, logging.FileHandler(settings.LOG_FILE))
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
        format=LOG_FORMAT,
        handlers=handlers,
    )


@dataclass
class Services:
    """The three backends a session needs; any may be None when not configured"""
    search: object = None
    geocoder: object = None
    directions: object = None

    @property
    def configured(self) -> bool:
        return self.search is not None and self.geocoder is not None

    def cleanup(self) -> None:
        seen = set()
        for backend in (self.search, self.geocoder, self.directions):
            if backend is None or id(backend) in seen:
                continue
            seen.add(id(backend))
            if hasattr(backend, 'cleanup'):
                backend.cleanup()


def build_services(settings: Settings) -> Services:
    logger.info(f"API Key found: {'Yes' if settings.has_google_key else 'No'}")
    google = build_google_service(settings.GOOGLE_MAPS_API_KEY, timeout=settings.REQUEST_TIMEOUT_S)
    if settings.PLACES_BACKEND == 'osm':
        logger.info("Using OpenStreetMap (Nominatim/Overpass) for geocoding and place search")
        osm = OpenStreetMapService(
            settings.NOMINATIM_USER_AGENT,
            min_interval=settings.NOMINATIM_MIN_INTERVAL,
            timeout=settings.REQUEST_TIMEOUT_S,
        )
        if google is None:
            logger.warning("No Google Maps key: travel times will stay unknown")
        return Services(search=osm, geocoder=osm, directions=google)
    if google is None:
        logger.warning("GOOGLE_MAPS_API_KEY not found or not configured in environment variables")
        return Services()
    logger.info("Google Maps service initialized successfully")
    return Services(search=google, geocoder=google, directions=google)


@dataclass
class HalfwayState:
    settings: Settings
    services: Services
    runner: SessionRunner
    sessions: Dict[str, SessionOrchestrator] = field(default_factory=dict)
    last_seen: Dict[str, float] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)
    clock: Callable[[], float] = time.monotonic

    @property
    def call_timeout(self) -> float:
        # geocode + a search, its synonym pass and its retry, each bounded by the request timeout
        return self.settings.REQUEST_TIMEOUT_S * 5 + 5

    def _pop_stale(self, incoming: int = 0) -> List[SessionOrchestrator]:
        """Remove idle sessions and, over the cap, the least recently used ones. Caller holds the lock."""
        now = self.clock()
        expired = [sid for sid, seen in self.last_seen.items() if now - seen > self.settings.SESSION_TTL_S]
        overflow = len(self.sessions) - len(expired) + incoming - self.settings.MAX_SESSIONS
        if overflow > 0:
            by_age = sorted((sid for sid in self.last_seen if sid not in expired), key=self.last_seen.get)
            expired.extend(by_age[:overflow])
        evicted = []
        for sid in expired:
            self.last_seen.pop(sid, None)
            session = self.sessions.pop(sid, None)
            if session is not None:
                logger.info("Evicting session %s", sid)
                evicted.append(session)
        return evicted

    def _close_all(self, sessions: List[SessionOrchestrator]) -> None:
        for session in sessions:
            self.runner.submit(session.close(), timeout=self.call_timeout)

    def create_session(self) -> str:
        async def _create():
            session = SessionOrchestrator.from_settings(
                self.settings,
                self.services.search,
                directions=self.services.directions,
                geocoder=self.services.geocoder,
            )
            session.start()
            return session

        session = self.runner.submit(_create(), timeout=self.call_timeout)
        session_id = uuid.uuid4().hex
        with self.lock:
            evicted = self._pop_stale(incoming=1)
            self.sessions[session_id] = session
            self.last_seen[session_id] = self.clock()
        self._close_all(evicted)
        return session_id

    def get_session(self, session_id: str) -> Optional[SessionOrchestrator]:
        with self.lock:
            evicted = self._pop_stale()
            session = self.sessions.get(session_id)
            if session is not None:
                self.last_seen[session_id] = self.clock()
        self._close_all(evicted)
        return session

    def close_session(self, session_id: str) -> bool:
        with self.lock:
            session = self.sessions.pop(session_id, None)
            self.last_seen.pop(session_id, None)
        if session is None:
            return False
        self.runner.submit(session.close(), timeout=self.call_timeout)
        return True

    def snapshot(self, session: SessionOrchestrator) -> Dict:
        return self.runner.call(session.snapshot, timeout=self.call_timeout)

    def shutdown(self) -> None:
        with self.lock:
            sessions = list(self.sessions.values())
            self.sessions.clear()
            self.last_seen.clear()
        self._close_all(sessions)
        self.runner.stop()
        self.services.cleanup()


def _state() -> HalfwayState:
    return current_app.extensions['halfway']


def _not_configured():
    logger.error("Maps backend not configured - cannot process request")
    return jsonify({'error': 'Google Maps API key not configured'}), 500


def _session_or_404(session_id: str):
    session = _state().get_session(session_id)
    if session is None:
        return None, (jsonify({'error': f'Unknown session: {session_id}'}), 404)
    return session, None


def _parse_coordinate(data: Dict) -> Coordinate:
    try:
        lat = float(data['lat'])
        lng = float(data['lng'])
    except (KeyError, TypeError, ValueError):
        raise ValueError('lat and lng must be numbers')
    if not -90.0 <= lat <= 90.0 or not -180.0 <= lng <= 180.0:
        raise ValueError('lat must be within [-90, 90] and lng within [-180, 180]')
    return Coordinate(lat=lat, lng=lng)


def create_app(settings: Optional[Settings] = None, services: Optional[Services] = None) -> Flask:
    settings = settings or default_settings
    if services is None:
        services = build_services(settings)

    app = Flask(__name__)
    CORS(app)  # Enable CORS for all routes
    app.extensions['halfway'] = HalfwayState(
        settings=settings,
        services=services,
        runner=SessionRunner().start(),
    )

    # Per-request timing: record start time and log duration on completion
    @app.before_request
    def _start_timer():
        g._start_time = perf_counter()

    @app.after_request
    def _log_request_duration(response):
        start = getattr(g, '_start_time', None)
        if start is not None:
            duration_ms = (perf_counter() - start) * 1000.0
            response.headers['X-Process-Time-ms'] = f"{duration_ms:.1f}"
            logger.info(
                "request completed: method=%s path=%s status=%s duration_ms=%.1f remote_addr=%s",
                request.method,
                request.full_path if request.query_string else request.path,
                response.status_code,
                duration_ms,
                request.remote_addr,
            )
        return response

    @app.teardown_request
    def _teardown_request_log(error=None):
        # If an unhandled exception occurred, ensure we still log duration
        if error is not None:
            start = getattr(g, '_start_time', None)
            duration_ms = (perf_counter() - start) * 1000.0 if start is not None else None
            logger.error(
                "request error: method=%s path=%s duration_ms=%s error=%s",
                request.method,
                request.path,
                f"{duration_ms:.1f}" if duration_ms is not None else 'unknown',
                repr(error),
            )

    @app.route('/', methods=['GET'])
    def health_check():
        """Health check endpoint"""
        return jsonify({
            'message': 'Halfway API is running!',
            'endpoints': {
                'geocode': '/api/geocode',
                'sessions': '/api/sessions',
                'session': '/api/sessions/<session_id>',
                'origin': '/api/sessions/<session_id>/origins/<index>',
                'parameters': '/api/sessions/<session_id>/parameters',
                'config': '/api/config',
                'health': '/'
            },
            'status': 'healthy'
        })

    @app.route('/api/config', methods=['GET'])
    def get_config():
        state = _state()
        return jsonify({
            'success': True,
            'data': {
                'placesBackend': state.settings.PLACES_BACKEND,
                'configured': state.services.configured,
                'travelTimesEnabled': state.services.directions is not None,
                'defaultRadiusM': state.settings.DEFAULT_RADIUS_M,
                'maxOrigins': state.settings.MAX_ORIGINS,
                'categories': ['all'] + [c.value for c in Category.searchable()],
                'apiBaseUrl': request.host_url.rstrip('/')
            }
        })

    @app.route('/api/geocode', methods=['POST'])
    def geocode_address():
        """
        Geocode a single address
        Expected JSON: {"address": "Trafalgar Square, London"}
        """
        state = _state()
        if not state.services.configured:
            return _not_configured()

        data = request.get_json(silent=True)
        if not data or not data.get('address'):
            logger.error("Address not provided in request")
            return jsonify({'error': 'Address is required'}), 400

        address = data['address']
        logger.info(f"Attempting to geocode address: '{address}'")
        try:
            result = state.services.geocoder.geocode_address(address)
        except GeocodeFailed as e:
            logger.warning(f"Failed to geocode address: '{address}'")
            return jsonify({'success': False, 'error': str(e)}), 404
        return jsonify({
            'success': True,
            'data': {'name': result['name'], **result['coordinate'].to_dict()}
        })

    @app.route('/api/sessions', methods=['POST'])
    def create_session():
        state = _state()
        if not state.services.configured:
            return _not_configured()
        session_id = state.create_session()
        logger.info("Created session %s", session_id)
        return jsonify({'success': True, 'data': {'session_id': session_id}}), 201

    @app.route('/api/sessions/<session_id>', methods=['GET'])
    def get_session(session_id):
        session, error = _session_or_404(session_id)
        if error:
            return error
        return jsonify({'success': True, 'data': _state().snapshot(session)})

    @app.route('/api/sessions/<session_id>', methods=['DELETE'])
    def delete_session(session_id):
        if not _state().close_session(session_id):
            return jsonify({'error': f'Unknown session: {session_id}'}), 404
        return jsonify({'success': True})

    @app.route('/api/sessions/<session_id>/origins/<int:index>', methods=['PUT'])
    def put_origin(session_id, index):
        """
        Set origin ``index`` of a session, then search.
        Expected JSON: {"address": "..."} or {"lat": 51.5, "lng": -0.12, "name": "Home"}
        """
        state = _state()
        session, error = _session_or_404(session_id)
        if error:
            return error
        data = request.get_json(silent=True)
        if not data:
            return jsonify({'error': 'JSON data is required'}), 400

        try:
            if data.get('address'):
                state.runner.submit(session.resolve_origin(index, data['address']), timeout=state.call_timeout)
            else:
                coordinate = _parse_coordinate(data)
                if data.get('current_location'):
                    origin = Origin.current_location(coordinate)
                else:
                    origin = Origin(name=data.get('name') or f"{coordinate.lat:.5f}, {coordinate.lng:.5f}", coordinate=coordinate)
                state.runner.submit(session.set_origin(index, origin), timeout=state.call_timeout)
        except GeocodeFailed as e:
            return jsonify({'success': False, 'error': str(e)}), 404
        except (IndexError, ValueError) as e:
            return jsonify({'success': False, 'error': str(e)}), 400
        return jsonify({'success': True, 'data': state.snapshot(session)})

    @app.route('/api/sessions/<session_id>/origins/<int:index>', methods=['DELETE'])
    def delete_origin(session_id, index):
        state = _state()
        session, error = _session_or_404(session_id)
        if error:
            return error
        try:
            state.runner.submit(session.remove_origin(index), timeout=state.call_timeout)
        except IndexError as e:
            return jsonify({'success': False, 'error': str(e)}), 400
        return jsonify({'success': True, 'data': state.snapshot(session)})

    @app.route('/api/sessions/<session_id>/parameters', methods=['PUT'])
    def put_parameters(session_id):
        """
        Change search parameters, then search again.
        Expected JSON (all optional): {"radius_m": 1500, "category": "Cafe", "query": "ramen", "text_filter": "..."}
        """
        state = _state()
        session, error = _session_or_404(session_id)
        if error:
            return error
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return jsonify({'error': 'JSON data is required'}), 400

        changes = {}
        if 'radius_m' in data:
            radius = data['radius_m']
            if isinstance(radius, bool) or not isinstance(radius, (int, float)) or not math.isfinite(radius) \
                    or radius < MIN_RADIUS_M or radius > geo.MAX_SLIDER_RADIUS_M:
                logger.error(f"Invalid search radius: {radius}")
                return jsonify({'error': f'radius_m must be between {MIN_RADIUS_M:.0f} and {geo.MAX_SLIDER_RADIUS_M:.0f} meters'}), 400
            changes['radius_m'] = radius
        if 'category' in data:
            try:
                changes['category'] = Category.parse(data['category'])
            except ValueError as e:
                return jsonify({'error': str(e)}), 400
        for key in ('query', 'text_filter'):
            if data.get(key) is not None and not isinstance(data[key], str):
                logger.error(f"Invalid {key}: {data[key]!r}")
                return jsonify({'error': f'{key} must be a string or null'}), 400
        if 'query' in data:
            changes['query'] = data['query'] or None

        try:
            if changes:
                state.runner.submit(session.update_parameters(**changes), timeout=state.call_timeout)
            if 'text_filter' in data:
                state.runner.call(lambda: session.set_text_filter(data['text_filter']), timeout=state.call_timeout)
        except ValueError as e:
            return jsonify({'success': False, 'error': str(e)}), 400
        return jsonify({'success': True, 'data': state.snapshot(session)})

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({'error': 'Endpoint not found'}), 404

    @app.errorhandler(500)
    def internal_error(error):
        return jsonify({'error': 'Internal server error'}), 500

    return app
