"""Point cloud helpers: filtering, transforming and PCD file input/output.

A cloud is an ``(N, 3)`` array of x, y, z or an ``(N, 4)`` array that also
carries intensity.
"""

from __future__ import annotations

import os

import numpy as np

_PCD_TYPES = {"F": "f", "I": "i", "U": "u"}


def _as_cloud(points) -> np.ndarray:
    arr = np.asarray(points, dtype=float)
    if arr.size == 0:
        width = arr.shape[1] if arr.ndim == 2 else 3
        return np.empty((0, max(width, 3)))
    if arr.ndim != 2 or arr.shape[1] < 3:
        raise ValueError(f"a cloud needs shape (N, 3) or (N, 4), got {arr.shape}")
    return arr


def remove_nan(points) -> np.ndarray:
    """Drop points whose x, y or z is not finite."""
    cloud = _as_cloud(points)
    return cloud[np.isfinite(cloud[:, :3]).all(axis=1)]


def voxel_grid_filter(points, leaf_size: float) -> np.ndarray:
    """Replace the points of each cubic voxel by their centroid.

    Voxels come out ordered by z index, then y, then x.
    """
    if leaf_size <= 0:
        raise ValueError("leaf size must be positive")
    cloud = remove_nan(points)
    if len(cloud) == 0:
        return cloud
    idx = np.floor(cloud[:, :3] / leaf_size).astype(np.int64)
    keys = idx[:, ::-1]
    _, inverse, counts = np.unique(keys, axis=0, return_inverse=True, return_counts=True)
    inverse = inverse.reshape(-1)
    sums = np.zeros((len(counts), cloud.shape[1]))
    np.add.at(sums, inverse, cloud)
    return sums / counts[:, None]


def range_filter(points, min_range: float, max_range: float) -> np.ndarray:
    """Keep points whose horizontal distance lies strictly between the bounds."""
    cloud = _as_cloud(points)
    r = np.hypot(cloud[:, 0], cloud[:, 1])
    return cloud[(min_range < r) & (r < max_range)]


def transform_points(points, matrix) -> np.ndarray:
    """Apply a 4x4 homogeneous transform to x, y, z; extra columns are kept."""
    cloud = _as_cloud(points)
    m = np.asarray(matrix, dtype=float)
    if m.shape != (4, 4):
        raise ValueError(f"expected a 4x4 matrix, got shape {m.shape}")
    out = cloud.copy()
    out[:, :3] = cloud[:, :3] @ m[:3, :3].T + m[:3, 3]
    return out


def save_pcd(path, points, binary: bool = True) -> None:
    """Write a cloud as a PCD v0.7 file with float fields."""
    cloud = _as_cloud(points)
    fields = ["x", "y", "z"] + (["intensity"] if cloud.shape[1] >= 4 else [])
    data = cloud[:, : len(fields)].astype("<f4")
    n = len(data)
    count = len(fields)
    header = "\n".join(
        [
            "# .PCD v0.7 - Point Cloud Data file format",
            "VERSION 0.7",
            "FIELDS " + " ".join(fields),
            "SIZE " + " ".join(["4"] * count),
            "TYPE " + " ".join(["F"] * count),
            "COUNT " + " ".join(["1"] * count),
            f"WIDTH {n}",
            "HEIGHT 1",
            "VIEWPOINT 0 0 0 1 0 0 0",
            f"POINTS {n}",
            "DATA " + ("binary" if binary else "ascii"),
            "",
        ]
    )
    with open(path, "wb") as fh:
        fh.write(header.encode("ascii"))
        if binary:
            fh.write(data.tobytes())
        else:
            for row in data:
                fh.write((" ".join(f"{v:.9g}" for v in row) + "\n").encode("ascii"))


def _read_header(fh) -> dict[str, list[str]]:
    header: dict[str, list[str]] = {}
    while True:
        line = fh.readline()
        if not line:
            raise ValueError("PCD header has no DATA line")
        text = line.decode("ascii", errors="replace").strip()
        if not text or text.startswith("#"):
            continue
        key, *values = text.split()
        header[key.upper()] = values
        if key.upper() == "DATA":
            return header


def load_pcd(path: str | os.PathLike) -> np.ndarray:
    """Read x, y, z (and intensity if present) from an ascii or binary PCD file."""
    with open(path, "rb") as fh:
        header = _read_header(fh)
        body = fh.read()

    fields = header.get("FIELDS", [])
    sizes = [int(s) for s in header.get("SIZE", [])]
    types = header.get("TYPE", [])
    counts = [int(c) for c in header.get("COUNT", ["1"] * len(fields))]
    if not (len(fields) == len(sizes) == len(types) == len(counts)):
        raise ValueError("PCD header fields, sizes, types and counts disagree")
    if not {"x", "y", "z"} <= set(fields):
        raise ValueError("PCD file lacks x, y, z fields")
    if "POINTS" in header:
        n = int(header["POINTS"][0])
    else:
        n = int(header["WIDTH"][0]) * int(header.get("HEIGHT", ["1"])[0])
    wanted = [f for f in ("x", "y", "z", "intensity") if f in fields]
    mode = header["DATA"][0].lower()

    if mode == "binary":
        descr = []
        for i, (name, size, typ, cnt) in enumerate(zip(fields, sizes, types, counts)):
            if typ not in _PCD_TYPES:
                raise ValueError(f"unknown PCD field type {typ!r}")
            fmt = f"<{_PCD_TYPES[typ]}{size}"
            label = name if name != "_" else f"_pad{i}"
            descr.append((label, fmt, (cnt,)) if cnt > 1 else (label, fmt))
        dtype = np.dtype(descr)
        if len(body) < dtype.itemsize * n:
            raise ValueError("PCD file is shorter than its header declares")
        records = np.frombuffer(body, dtype=dtype, count=n)
        return np.column_stack([records[f].astype(float) for f in wanted]) if n else np.empty((0, len(wanted)))

    if mode == "ascii":
        columns = {}
        col = 0
        for name, cnt in zip(fields, counts):
            columns.setdefault(name, col)
            col += cnt
        lines = [ln for ln in body.decode("ascii").splitlines() if ln.strip()][:n]
        if not lines:
            return np.empty((0, len(wanted)))
        table = np.array([[float(v) for v in ln.split()] for ln in lines])
        return table[:, [columns[f] for f in wanted]]

    raise ValueError(f"unsupported PCD data mode {mode!r}")