"""
Disk-cached per-pixel sample table for batch conversion.

For every output pixel the table holds the run of (lens, source index) hits
of its antialias samples, terminated by a sentinel record. Frames that share
geometry replay the table instead of redoing the projection.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import NamedTuple, Optional, Sequence

import numpy as np

from .fisheye_to_equirect import (
    BlendConfig, SampleBlock, DEFAULT_ROWS_PER_BLOCK, assemble, row_blocks, sample_rows
)

RECORD_DTYPE = np.dtype([('lens', 'i1'), ('index', '<i4')])
SENTINEL = -1


class LookupKey(NamedTuple):
    template_id: int
    out_width: int
    out_height: int
    antialias: int

    @classmethod
    def for_config(cls, template_id: int, config: BlendConfig) -> 'LookupKey':
        return cls(int(template_id), config.out_width, config.out_height, config.antialias)

    @property
    def filename(self) -> str:
        return f"f_{self.template_id}_{self.out_width}_{self.out_height}_{self.antialias}.data"

    @property
    def capacity(self) -> int:
        """Record count of a table file: every (pixel, ai, aj, lens) slot plus one sentinel per pixel."""
        return self.out_width * self.out_height * (2 * self.antialias * self.antialias + 1)

    def matches(self, config: BlendConfig) -> bool:
        return (self.out_width, self.out_height, self.antialias) == (config.out_width, config.out_height, config.antialias)


@dataclass(frozen=True)
class LookupTable:
    key: LookupKey
    records: np.ndarray  # RECORD_DTYPE, length key.capacity
    pixel_start: np.ndarray  # First record of each output pixel
    pixel_end: np.ndarray  # Sentinel record of each output pixel

    @classmethod
    def from_records(cls, key: LookupKey, records: np.ndarray) -> Optional['LookupTable']:
        """Index a record array; None if it does not describe a table for key."""
        if records.dtype != RECORD_DTYPE or records.size != key.capacity:
            return None
        n_pixels = key.out_width * key.out_height
        ends = np.flatnonzero(records['lens'] < 0)[:n_pixels]
        if ends.size != n_pixels:
            return None
        starts = np.concatenate([[0], ends[:-1] + 1])
        if np.any(ends - starts > 2 * key.antialias * key.antialias):
            return None
        return cls(key, records, starts, ends)

    @classmethod
    def build(cls, lenses: Sequence, config: BlendConfig, key: LookupKey,
              rows_per_block: int = DEFAULT_ROWS_PER_BLOCK) -> 'LookupTable':
        """Run the full projection once and record each pixel's hits."""
        if not key.matches(config):
            raise ValueError(f"Lookup key {key} does not match output configuration")
        chunks = []
        for rows in row_blocks(config.out_height, rows_per_block):
            block = sample_rows(lenses, rows, config)
            n_pixels = len(block.pixels)
            lens = np.concatenate([block.lens, np.full((n_pixels, 1), SENTINEL, dtype=np.int8)], axis=1)
            index = np.concatenate([block.index, np.full((n_pixels, 1), SENTINEL, dtype=np.int32)], axis=1)
            keep = lens >= 0
            keep[:, -1] = True
            chunk = np.empty(int(keep.sum()), dtype=RECORD_DTYPE)
            chunk['lens'], chunk['index'] = lens[keep], index[keep]
            chunks.append(chunk)

        records = np.empty(key.capacity, dtype=RECORD_DTYPE)
        records['lens'], records['index'] = SENTINEL, SENTINEL
        used = np.concatenate(chunks)
        records[:used.size] = used
        return cls.from_records(key, records)

    @classmethod
    def load(cls, directory, key: LookupKey) -> Optional['LookupTable']:
        """Load a cached table; None if missing or of the wrong size."""
        path = Path(directory) / key.filename
        if not path.is_file():
            return None
        records = np.fromfile(path, dtype=RECORD_DTYPE)
        return cls.from_records(key, records)

    def save(self, directory) -> Path:
        path = Path(directory) / self.key.filename
        path.parent.mkdir(parents=True, exist_ok=True)
        self.records.tofile(path)
        return path

    @classmethod
    def load_or_build(cls, directory, lenses: Sequence, config: BlendConfig, key: LookupKey,
                      debug: bool = False) -> 'LookupTable':
        table = cls.load(directory, key)
        if table is not None:
            if debug:
                print(f"  Read lookup table {Path(directory) / key.filename}")
            return table
        if (Path(directory) / key.filename).exists():
            print(f"  Lookup table {key.filename} is stale, rebuilding")
        else:
            print(f"  Building lookup table {key.filename}...")
        table = cls.build(lenses, config, key)
        path = table.save(directory)
        print(f"  Saved lookup table: {path}")
        return table

    def block(self, rows) -> SampleBlock:
        """Expand the runs of the given output rows back into dense slots."""
        rows = np.atleast_1d(np.asarray(rows, dtype=np.int64))
        W = self.key.out_width
        n_slots = 2 * self.key.antialias * self.key.antialias
        pixels = (rows[:, np.newaxis] * W + np.arange(W)[np.newaxis, :]).ravel()

        lens = np.full((len(pixels), n_slots), SENTINEL, dtype=np.int8)
        index = np.full((len(pixels), n_slots), SENTINEL, dtype=np.int32)
        starts, ends = self.pixel_start[pixels], self.pixel_end[pixels]
        lengths = ends - starts
        total = int(lengths.sum())
        if total:
            owner = np.repeat(np.arange(len(pixels)), lengths)
            position = np.arange(total) - np.repeat(np.cumsum(lengths) - lengths, lengths)
            source = np.repeat(starts, lengths) + position
            lens[owner, position] = self.records['lens'][source]
            index[owner, position] = self.records['index'][source]
        return SampleBlock(pixels, lens, index)

    def replay(self, sources: Sequence[np.ndarray], config: BlendConfig,
               rows_per_block: int = DEFAULT_ROWS_PER_BLOCK) -> np.ndarray:
        """Render one frame from the cached samples, bottom-up rows."""
        if not self.key.matches(config):
            raise ValueError(f"Lookup table {self.key} cannot render {config.out_width}x{config.out_height} "
                             f"antialias {config.antialias}")
        blocks = (self.block(rows) for rows in row_blocks(config.out_height, rows_per_block))
        return assemble(blocks, sources, config)
