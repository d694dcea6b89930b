"""Game-server provisioning for matches that finished the map veto.

Every provisioner answers ``provision(match)`` with either
``{'success': True, 'server_info': {...}}`` or
``{'success': False, 'error': '...'}`` and never raises for an external
failure. ``teardown(server_id)`` is best effort.
"""
import json
import time

import requests
from flask import current_app

# Display name -> map id understood by MatchZy (workshop ids for non-stock maps).
MAP_IDS = {
    'Dust II': 'de_dust2',
    'Mirage': 'de_mirage',
    'Inferno': 'de_inferno',
    'Nuke': 'de_nuke',
    'Overpass': 'de_overpass',
    'Vertigo': 'de_vertigo',
    'Ancient': 'de_ancient',
    'Anubis': 'de_anubis',
    'Cache': '3437809122',
    'Cobblestone': '3070293560',
    'Train': '3070284539',
    'Aztec': '3079692971',
}

_MATCHZY_CVARS = {
    'mp_friendlyfire': '0',
    'mp_match_can_clinch': '1',
    'matchzy_force_teamnames': '1',
    'matchzy_force_playerlocknames': '1',
    'mp_overtime_enable': '1',
    'mp_overtime_maxrounds': '6',
    'mp_overtime_startmoney': '16000',
    'mp_warmuptime': '60',
    'mp_autoteambalance': '0',
    'mp_limitteams': '0',
    'matchzy_knife_winner_decision': 'stay',
    'matchzy_autobalance_teams': '0',
    'matchzy_disconnect_tolerance_time': '300',
    'mp_maxrounds': '30',
    'sv_hibernate_when_empty': '0',
}


def map_id_for(map_name):
    name = str(map_name or '')
    return MAP_IDS.get(name, name.lower().replace(' ', '_'))


def _team_roster(match, side):
    names = {p.steam_id: p.name for p in match.players}
    return {steam_id: names.get(steam_id) or 'Player' for steam_id in match.team(side)}


def build_matchzy_config(match, match_number):
    """MatchZy ``gameConfig.json`` payload for a vetoed match."""
    names = {p.steam_id: p.name for p in match.players}
    team1_name = names.get(match.captain_alpha) or 'Team Alpha'
    team2_name = names.get(match.captain_beta) or 'Team Beta'
    cvars = dict(_MATCHZY_CVARS)
    cvars['hostname'] = f'{team1_name} vs {team2_name} #{match_number}'
    return {
        'matchid': match_number,
        'team1': {'name': team1_name, 'players': _team_roster(match, 'alpha')},
        'team2': {'name': team2_name, 'players': _team_roster(match, 'beta')},
        'num_maps': 1,
        'maplist': [map_id_for(match.selected_map)],
        'map_sides': ['knife'],
        'spectators': {'players': {}},
        'clinch_series': True,
        'players_per_team': len(match.team('alpha')),
        'cvars': cvars,
    }


def build_whitelist(match):
    return '\n'.join(match.team('alpha') + match.team('beta')) + '\n'


def build_auto_setup():
    return 'matchzy_loadmatch cfg/MatchZy/gameConfig.json\n'


def _connect_string(ip, port, password=''):
    connect = f'connect {ip}:{port}'
    if password:
        connect += f'; password {password}'
    return connect


class NullProvisioner:
    """Used when no game-server backend is configured."""

    def provision(self, match):
        return {'success': False, 'error': 'No game server provisioner configured'}

    def teardown(self, server_id):
        return False


class StaticServerProvisioner:
    """Hands every match the same pre-configured server."""

    def __init__(self, ip, port, password=''):
        self.ip = ip
        self.port = port
        self.password = password or ''

    def provision(self, match):
        if not self.ip:
            return {'success': False, 'error': 'SERVER_IP not configured'}
        return {
            'success': True,
            'server_info': {
                'ip': self.ip,
                'port': self.port,
                'password': self.password,
                'server_id': None,
                'connect_string': _connect_string(self.ip, self.port, self.password),
            },
        }

    def teardown(self, server_id):
        return False


class DathostProvisioner:
    """Boots a DatHost CS2 server and loads the MatchZy match config on it."""

    def __init__(
        self, api_url, email, password, server_id, *,
        server_ip='', server_port=27015, boot_attempts=20,
        poll_seconds=2, timeout_seconds=15, http=None, sleep=time.sleep,
    ):
        self.api_url = str(api_url or '').rstrip('/')
        self.server_id = server_id
        self.server_ip = server_ip
        self.server_port = server_port
        self.boot_attempts = boot_attempts
        self.poll_seconds = poll_seconds
        self.timeout_seconds = timeout_seconds
        self.http = http or requests.Session()
        self.http.auth = (email, password)
        self._sleep = sleep

    def _url(self, path):
        return f'{self.api_url}/game-servers/{self.server_id}{path}'

    def _post(self, path, **kwargs):
        response = self.http.post(self._url(path), timeout=self.timeout_seconds, **kwargs)
        response.raise_for_status()
        return response

    def _status(self):
        response = self.http.get(self._url(''), timeout=self.timeout_seconds)
        response.raise_for_status()
        return response.json()

    def _wait_until_booted(self):
        for attempt in range(1, self.boot_attempts + 1):
            status = self._status()
            if status.get('on') and status.get('booting') is False:
                return status
            current_app.logger.info(
                'Waiting for server %s (attempt %s/%s)', self.server_id, attempt, self.boot_attempts,
            )
            self._sleep(self.poll_seconds)
        return None

    def _upload(self, remote_path, content):
        self._post(f'/files/{remote_path}', files={'file': (remote_path.rsplit('/', 1)[-1], content)})

    def provision(self, match):
        if not self.server_id:
            return {'success': False, 'error': 'DATHOST_SERVER_ID not configured'}

        match_number = match.external_match_number
        try:
            self._post('/start')
            status = self._wait_until_booted()
            if status is None:
                return {'success': False, 'error': 'Server did not become ready in time'}

            self._upload(
                'cfg/MatchZy/gameConfig.json',
                json.dumps(build_matchzy_config(match, match_number), indent=2),
            )
            self._upload('cfg/MatchZy/whitelist.cfg', build_whitelist(match))
            self._upload('cfg/MatchZy/autoSetup.cfg', build_auto_setup())
            self._post('/console', data={'line': 'exec MatchZy/autoSetup.cfg'})
        except requests.RequestException as exc:
            current_app.logger.warning('Provisioning match %s failed: %s', match.match_id, exc)
            return {'success': False, 'error': str(exc)}
        except ValueError:
            return {'success': False, 'error': 'Invalid game server status response'}

        ip = self.server_ip or (status.get('ip') or '')
        port = self.server_port or (status.get('ports') or {}).get('game')
        return {
            'success': True,
            'server_info': {
                'ip': ip,
                'port': port,
                'password': '',
                'server_id': self.server_id,
                'connect_string': _connect_string(ip, port),
            },
        }

    def teardown(self, server_id):
        if not server_id:
            return False
        try:
            response = self.http.post(
                f'{self.api_url}/game-servers/{server_id}/stop', timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            current_app.logger.warning('Teardown of server %s failed: %s', server_id, exc)
            return False
        return response.ok


def build_provisioner(app_config):
    kind = str(app_config.get('PROVISIONER') or 'null').strip().lower()
    if kind == 'static':
        return StaticServerProvisioner(
            app_config.get('SERVER_IP'),
            app_config.get('SERVER_PORT'),
            app_config.get('SERVER_PASSWORD'),
        )
    if kind == 'dathost':
        return DathostProvisioner(
            app_config.get('DATHOST_API_URL'),
            app_config.get('DATHOST_EMAIL'),
            app_config.get('DATHOST_PASSWORD'),
            app_config.get('DATHOST_SERVER_ID'),
            server_ip=app_config.get('SERVER_IP'),
            server_port=app_config.get('SERVER_PORT'),
            boot_attempts=app_config.get('DATHOST_BOOT_ATTEMPTS', 20),
            poll_seconds=app_config.get('DATHOST_POLL_SECONDS', 2),
            timeout_seconds=app_config.get('DATHOST_TIMEOUT_SECONDS', 15),
        )
    return NullProvisioner()
