"""Shard controller configuration and RPC message types.

A configuration assigns each of N_SHARDS shards to a replica group id.
Configuration 0 has no groups and every shard on group 0, the invalid group.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List

N_SHARDS = 10

OK = "OK"


def _unassigned() -> List[int]:
    return [0] * N_SHARDS


@dataclass
class Config:
    """A numbered assignment of shards to groups."""

    num: int = 0
    shards: List[int] = field(default_factory=_unassigned)
    groups: Dict[int, List[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.shards = list(self.shards)
        if len(self.shards) != N_SHARDS:
            raise ValueError(f"expected {N_SHARDS} shards, got {len(self.shards)}")


@dataclass
class JoinArgs:
    servers: Dict[int, List[str]] = field(default_factory=dict)


@dataclass
class JoinReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class LeaveArgs:
    gids: List[int] = field(default_factory=list)


@dataclass
class LeaveReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class MoveArgs:
    shard: int = 0
    gid: int = 0


@dataclass
class MoveReply:
    wrong_leader: bool = False
    err: str = ""


@dataclass
class QueryArgs:
    num: int = 0


@dataclass
class QueryReply:
    wrong_leader: bool = False
    err: str = ""
    config: Config = field(default_factory=Config)