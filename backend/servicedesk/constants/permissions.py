"""Central enum-like definitions to avoid typos in permission/service strings.
Extend cautiously; never rename codes silently since tokens already issued carry them.
"""
from __future__ import annotations
from typing import List, Dict

SERVICES = ['TKT', 'DEV', 'USER', 'RPT']

SERVICE_ACTIONS = {
    'TKT': ['READ', 'CREATE', 'STATUS', 'WORK', 'ASSIGN', 'REASSIGN'],
    'DEV': ['READ', 'MANAGE'],
    'USER': ['READ', 'MANAGE'],
    'RPT': ['READ'],
}


def build_all_permission_codes() -> List[str]:
    codes: List[str] = []
    for svc, actions in SERVICE_ACTIONS.items():
        for act in actions:
            codes.append(f"{svc}.{act}")
    return codes

ALL_PERMISSION_CODES = build_all_permission_codes()

ROLE_PRESETS: Dict[str, List[str]] = {
    'client': ['TKT.READ', 'TKT.CREATE', 'DEV.READ', 'DEV.MANAGE'],
    # Worker: front desk, registers clients/devices/tickets and moves tickets along
    'worker': [
        'TKT.READ', 'TKT.CREATE', 'TKT.STATUS', 'TKT.WORK', 'TKT.ASSIGN',
        'DEV.READ', 'DEV.MANAGE',
        'USER.READ',
    ],
    'technician': ['TKT.READ', 'TKT.STATUS', 'TKT.WORK', 'DEV.READ', 'USER.READ'],
    'manager': ['*'],
}


def permissions_for_role(role: str) -> List[str]:
    codes = ROLE_PRESETS.get(role, [])
    if '*' in codes:
        return list(ALL_PERMISSION_CODES)
    return list(codes)
