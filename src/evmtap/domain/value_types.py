from __future__ import annotations
from typing import NewType, Literal

Address = NewType("Address", str)   # 0x-prefixed, EIP-55 checksum
Topic0  = NewType("Topic0", str)    # 66-char 0x-hash, lowercase
Dex     = Literal["UniswapV2", "UniswapV3"]
EventKind = Literal["Swap"]
BlockTag = int | Literal["latest"]
