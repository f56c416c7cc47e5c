from __future__ import annotations

import logging
import os
from typing import Dict, Optional, cast

import pandas as pd

from .models import Anchor
from .config_manager import ConfigError, ConfigManager


logger = logging.getLogger(__name__)

MIN_ANCHORS = 3


class AnchorStore:
    """固定信标坐标（pandas，索引为 id），部署后只读"""

    def __init__(self, config_manager: Optional[ConfigManager] = None):
        self._df = pd.DataFrame(columns=["x", "y"])
        self._df.index.name = "id"
        self._config = config_manager or ConfigManager()

    # ---- Utils ----
    def _normalize_df(self, df: pd.DataFrame) -> pd.DataFrame:
        for col in ["id", "x", "y"]:
            if col not in df.columns:
                raise ConfigError(f"信标配置缺少 '{col}' 列")
            # 信标坐标缺失属于配置错误，不做默认填充
            df[col] = pd.to_numeric(df[col], errors="coerce")
        bad = df[df[["id", "x", "y"]].isna().any(axis=1)]
        if not bad.empty:
            raise ConfigError(f"信标配置存在非数值字段: {bad.to_dict(orient='records')}")
        df = df[["id", "x", "y"]]
        df = df.drop_duplicates(subset=["id"], keep="last")
        df = df.astype({"id": "int64", "x": "float64", "y": "float64"})
        df = df.set_index("id")
        return df.sort_index()

    # ---- Load ----
    def load(self, anchor_file_path: Optional[str] = None) -> "AnchorStore":
        csv_path = anchor_file_path or self._config.get_anchor_db_path()
        if csv_path:
            if not os.path.exists(csv_path):
                raise ConfigError(f"信标文件不存在: {csv_path}")
            df = pd.read_csv(csv_path)
            source = csv_path
        else:
            df = pd.DataFrame(self._config.get_anchor_config())
            source = "config.anchors"

        if df.empty:
            raise ConfigError(f"未配置信标: {source}")
        self._df = self._normalize_df(df)
        if len(self._df) < MIN_ANCHORS:
            raise ConfigError(f"至少需要 {MIN_ANCHORS} 个信标，当前 {len(self._df)} 个 ({source})")
        logger.info("已加载 %d 个信标 (%s)", len(self._df), source)
        return self

    # ---- Accessors ----
    def __len__(self) -> int:
        return len(self._df)

    def has(self, anchor_id: int) -> bool:
        return anchor_id in self._df.index

    def get(self, anchor_id: int) -> Optional[Anchor]:
        if anchor_id not in self._df.index:
            return None
        row = cast(pd.Series, self._df.loc[anchor_id])
        return Anchor(id=int(anchor_id), x=float(row.at["x"]), y=float(row.at["y"]))

    def all(self) -> Dict[int, Anchor]:
        result: Dict[int, Anchor] = {}
        for anchor_id, row in self._df.iterrows():
            row_s = cast(pd.Series, row)
            result[int(anchor_id)] = Anchor(
                id=int(anchor_id), x=float(row_s.at["x"]), y=float(row_s.at["y"])
            )
        return result
