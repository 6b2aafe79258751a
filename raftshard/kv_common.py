"""Sharded key/value RPC message types and error codes."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class Err(str, Enum):
    OK = "OK"
    NO_KEY = "ErrNoKey"
    WRONG_GROUP = "ErrWrongGroup"
    WRONG_LEADER = "ErrWrongLeader"


@dataclass
class PutAppendArgs:
    """Arguments of a Put or Append; ``op`` is "Put" or "Append"."""

    key: str = ""
    value: str = ""
    op: str = ""


@dataclass
class PutAppendReply:
    err: Optional[Err] = None


@dataclass
class GetArgs:
    key: str = ""


@dataclass
class GetReply:
    err: Optional[Err] = None
    value: str = ""