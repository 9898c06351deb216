from __future__ import annotations

import numpy as np

_EPS = 1e-6
_LUMA = np.array([0.299, 0.587, 0.114], dtype=np.float32)


class ProcessingService:
    """Pure NumPy pixel operations. Inputs and outputs are float32 arrays normalized to [0, 1].

    Channel convention:
    - Grayscale: (H, W)
    - RGB: (H, W, 3)

    Alpha is never passed in; callers split it off and reattach it.
    """

    # Brightness (multiplicative): I_out = I_in * factor
    @staticmethod
    def adjust_brightness(matrix: np.ndarray, factor: float) -> np.ndarray:
        out = np.clip(matrix.astype(np.float32) * float(factor), 0.0, 1.0)
        return out.astype(np.float32)

    # Contrast around mid grey: I_out = (I_in - 0.5) * factor + 0.5
    @staticmethod
    def adjust_contrast(matrix: np.ndarray, factor: float) -> np.ndarray:
        mat = matrix.astype(np.float32)
        out = np.clip((mat - 0.5) * float(factor) + 0.5, 0.0, 1.0)
        return out.astype(np.float32)

    # Gamma correction: I_out = I_in ^ (1 / gamma)
    @staticmethod
    def adjust_gamma(matrix: np.ndarray, gamma: float) -> np.ndarray:
        mat = np.clip(matrix.astype(np.float32), 0.0, 1.0)
        return np.power(mat, 1.0 / float(gamma)).astype(np.float32)

    # Linear: I_out = a * I_in + b / 255, a and b scalar or per channel
    @staticmethod
    def linear(matrix: np.ndarray, multiplier, offset) -> np.ndarray:
        mat = matrix.astype(np.float32)
        a = np.asarray(multiplier, dtype=np.float32)
        b = np.asarray(offset, dtype=np.float32) / 255.0
        if mat.ndim == 2 and (a.ndim or b.ndim):
            # per-channel values on a single channel image use the first entry
            a = a.reshape(-1)[0]
            b = b.reshape(-1)[0]
        out = np.clip(a * mat + b, 0.0, 1.0)
        return out.astype(np.float32)

    # Invert: I_out = 1 - I_in
    @staticmethod
    def invert_color(matrix: np.ndarray) -> np.ndarray:
        return (1.0 - matrix.astype(np.float32)).astype(np.float32)

    # Grayscale (Luminosity): 0.299*R + 0.587*G + 0.114*B
    @staticmethod
    def grayscale_luminosity(matrix: np.ndarray) -> np.ndarray:
        mat = matrix.astype(np.float32)
        if mat.ndim == 3 and mat.shape[2] >= 3:
            return np.dot(mat[..., :3], _LUMA).astype(np.float32)
        return mat

    # Threshold on the 0-255 scale, optionally collapsing to grayscale first
    @staticmethod
    def threshold(matrix: np.ndarray, value: int, grayscale: bool) -> np.ndarray:
        mat = matrix.astype(np.float32)
        if grayscale:
            mat = ProcessingService.grayscale_luminosity(mat)
        # compare on the 8-bit grid so 128 means the same thing as in an 8-bit editor
        quantized = np.rint(mat * 255.0)
        return (quantized >= float(value)).astype(np.float32)

    # Histogram stretch: luminance 1st/99th percentiles are mapped to 0 and 1
    @staticmethod
    def normalize(matrix: np.ndarray, lower: float = 1.0, upper: float = 99.0) -> np.ndarray:
        mat = matrix.astype(np.float32)
        lum = ProcessingService.grayscale_luminosity(mat)
        lo, hi = np.percentile(lum, [lower, upper])
        if hi - lo < _EPS:
            return mat
        out = np.clip((mat - lo) / (hi - lo), 0.0, 1.0)
        return out.astype(np.float32)

    # Modulate: brightness multiplies RGB, then hue rotates (degrees), saturation
    # multiplies and lightness adds (0-100 scale) in HLS space
    @staticmethod
    def modulate(
        matrix: np.ndarray,
        brightness: float = 1.0,
        saturation: float = 1.0,
        hue: float = 0.0,
        lightness: float = 0.0,
    ) -> np.ndarray:
        rgb = ProcessingService.to_rgb(matrix)
        if brightness != 1.0:
            rgb = np.clip(rgb * float(brightness), 0.0, 1.0)
        if saturation == 1.0 and hue == 0.0 and lightness == 0.0:
            return rgb.astype(np.float32)
        h, l, s = ProcessingService.rgb_to_hls(rgb)
        h = np.mod(h + float(hue) / 360.0, 1.0)
        s = np.clip(s * float(saturation), 0.0, 1.0)
        l = np.clip(l + float(lightness) / 100.0, 0.0, 1.0)
        return ProcessingService.hls_to_rgb(h, l, s)

    # Tint: keep luminance, take chroma from the tint colour
    @staticmethod
    def tint(matrix: np.ndarray, r: int, g: int, b: int) -> np.ndarray:
        lum = ProcessingService.grayscale_luminosity(matrix)
        colour = np.array([r, g, b], dtype=np.float32) / 255.0
        colour_lum = float(np.dot(colour, _LUMA))
        if colour_lum < _EPS:
            return np.zeros(lum.shape + (3,), dtype=np.float32)
        out = np.clip(lum[..., None] * (colour / colour_lum), 0.0, 1.0)
        return out.astype(np.float32)

    # Contrast limited adaptive histogram equalization over tiles of
    # tile_w x tile_h pixels, bilinearly blended between tile centres.
    # max_slope = 0 disables the contrast limit.
    @staticmethod
    def clahe(matrix: np.ndarray, tile_w: int, tile_h: int, max_slope: float) -> np.ndarray:
        mat = matrix.astype(np.float32)
        if mat.ndim == 2:
            return ProcessingService._clahe_channel(mat, tile_w, tile_h, max_slope)
        lum = ProcessingService.grayscale_luminosity(mat)
        eq = ProcessingService._clahe_channel(lum, tile_w, tile_h, max_slope)
        ratio = eq / np.maximum(lum, _EPS)
        out = np.where(lum[..., None] < _EPS, eq[..., None], mat * ratio[..., None])
        return np.clip(out, 0.0, 1.0).astype(np.float32)

    # Gaussian blur, separable, edge-replicated borders
    @staticmethod
    def gaussian_blur(matrix: np.ndarray, sigma: float) -> np.ndarray:
        mat = matrix.astype(np.float32)
        if sigma <= 0:
            return mat
        radius = max(1, int(np.ceil(3.0 * sigma)))
        x = np.arange(-radius, radius + 1, dtype=np.float32)
        kernel = np.exp(-(x**2) / (2.0 * sigma * sigma))
        kernel /= kernel.sum()
        out = ProcessingService._convolve_axis(mat, kernel, axis=0)
        return ProcessingService._convolve_axis(out, kernel, axis=1)

    # Unsharp mask on luminance. Detail below x1 (flat areas) is scaled by m1,
    # above by m2 (jagged areas); the correction is capped at +y2 / -y3 (0-255 scale)
    @staticmethod
    def sharpen(
        matrix: np.ndarray,
        sigma: float,
        m1: float,
        m2: float,
        x1: float,
        y2: float,
        y3: float,
    ) -> np.ndarray:
        mat = matrix.astype(np.float32)
        lum = ProcessingService.grayscale_luminosity(mat)
        detail = lum - ProcessingService.gaussian_blur(lum, sigma)
        gain = np.where(np.abs(detail) < x1 / 255.0, m1, m2).astype(np.float32)
        delta = np.clip(detail * gain, -y3 / 255.0, y2 / 255.0)
        if mat.ndim == 3:
            delta = delta[..., None]
        return np.clip(mat + delta, 0.0, 1.0).astype(np.float32)

    # Convolve with a width x height kernel (row-major), on the 0-255 scale:
    # I_out = sum(k * patch) / scale + offset
    @staticmethod
    def convolve(
        matrix: np.ndarray,
        kernel,
        width: int,
        height: int,
        scale: float = 1.0,
        offset: float = 0.0,
    ) -> np.ndarray:
        mat = matrix.astype(np.float32)
        k = np.asarray(kernel, dtype=np.float32).reshape(height, width)
        ry, rx = height // 2, width // 2
        pad = [(ry, height - 1 - ry), (rx, width - 1 - rx)] + [(0, 0)] * (mat.ndim - 2)
        padded = np.pad(mat, pad, mode="edge")
        h, w = mat.shape[:2]
        acc = np.zeros_like(mat)
        for dy in range(height):
            for dx in range(width):
                weight = k[dy, dx]
                if weight != 0:
                    acc += weight * padded[dy : dy + h, dx : dx + w]
        out = np.clip(acc / float(scale) + float(offset) / 255.0, 0.0, 1.0)
        return out.astype(np.float32)

    # Bounding box (left, top, right, bottom) of pixels that differ from the
    # top-left pixel by more than threshold (0-255 scale). None if uniform.
    @staticmethod
    def trim_box(matrix: np.ndarray, threshold: float) -> tuple[int, int, int, int] | None:
        mat = matrix.astype(np.float32)
        reference = mat[0, 0]
        diff = np.abs(mat - reference) * 255.0
        if diff.ndim == 3:
            diff = diff.max(axis=2)
        mask = diff > float(threshold)
        if not mask.any():
            return None
        rows = np.flatnonzero(mask.any(axis=1))
        cols = np.flatnonzero(mask.any(axis=0))
        return int(cols[0]), int(rows[0]), int(cols[-1]) + 1, int(rows[-1]) + 1

    # Composite `over` onto `base` at (left, top) using a blend mode.
    # Colours are RGB (H, W, 3), alphas are (H, W). Returns new (rgb, alpha).
    @staticmethod
    def composite(
        base: np.ndarray,
        base_alpha: np.ndarray,
        over: np.ndarray,
        over_alpha: np.ndarray,
        left: int,
        top: int,
        mode: str = "over",
    ) -> tuple[np.ndarray, np.ndarray]:
        out = base.astype(np.float32).copy()
        out_alpha = base_alpha.astype(np.float32).copy()
        bh, bw = out.shape[:2]
        oh, ow = over.shape[:2]
        x0, y0 = max(left, 0), max(top, 0)
        x1, y1 = min(left + ow, bw), min(top + oh, bh)
        if x1 <= x0 or y1 <= y0:
            return out, out_alpha
        ox, oy = x0 - left, y0 - top
        cb = out[y0:y1, x0:x1]
        ab = out_alpha[y0:y1, x0:x1][..., None]
        cs = over[oy : oy + (y1 - y0), ox : ox + (x1 - x0)].astype(np.float32)
        as_ = over_alpha[oy : oy + (y1 - y0), ox : ox + (x1 - x0)][..., None].astype(np.float32)

        if mode in _PORTER_DUFF:
            fa, fb = _PORTER_DUFF[mode](as_, ab)
            co = cs * as_ * fa + cb * ab * fb
            ao = as_ * fa + ab * fb
        else:
            mixed = (1.0 - ab) * cs + ab * _BLEND[mode](cb, cs)
            co = as_ * mixed + ab * cb * (1.0 - as_)
            ao = as_ + ab * (1.0 - as_)
        colour = np.where(ao > _EPS, co / np.maximum(ao, _EPS), 0.0)
        out[y0:y1, x0:x1] = np.clip(colour, 0.0, 1.0)
        out_alpha[y0:y1, x0:x1] = np.clip(ao[..., 0], 0.0, 1.0)
        return out, out_alpha

    # --------- helpers ---------
    @staticmethod
    def to_rgb(matrix: np.ndarray) -> np.ndarray:
        mat = matrix.astype(np.float32)
        if mat.ndim == 2:
            return np.repeat(mat[..., None], 3, axis=2)
        return mat[..., :3]

    @staticmethod
    def rgb_to_hls(rgb: np.ndarray) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        r, g, b = rgb[..., 0], rgb[..., 1], rgb[..., 2]
        maxc = np.max(rgb, axis=2)
        minc = np.min(rgb, axis=2)
        l = (maxc + minc) / 2.0
        d = maxc - minc
        safe_d = np.where(d < _EPS, 1.0, d)
        s = np.where(
            d < _EPS,
            0.0,
            np.where(l <= 0.5, d / np.maximum(maxc + minc, _EPS), d / np.maximum(2.0 - maxc - minc, _EPS)),
        )
        rc = (maxc - r) / safe_d
        gc = (maxc - g) / safe_d
        bc = (maxc - b) / safe_d
        h = np.where(r == maxc, bc - gc, np.where(g == maxc, 2.0 + rc - bc, 4.0 + gc - rc))
        h = np.where(d < _EPS, 0.0, np.mod(h / 6.0, 1.0))
        return h.astype(np.float32), l.astype(np.float32), s.astype(np.float32)

    @staticmethod
    def hls_to_rgb(h: np.ndarray, l: np.ndarray, s: np.ndarray) -> np.ndarray:
        m2 = np.where(l <= 0.5, l * (1.0 + s), l + s - l * s)
        m1 = 2.0 * l - m2

        def channel(hue: np.ndarray) -> np.ndarray:
            hue = np.mod(hue, 1.0)
            return np.where(
                hue < 1.0 / 6.0,
                m1 + (m2 - m1) * hue * 6.0,
                np.where(
                    hue < 0.5,
                    m2,
                    np.where(hue < 2.0 / 3.0, m1 + (m2 - m1) * (2.0 / 3.0 - hue) * 6.0, m1),
                ),
            )

        rgb = np.stack([channel(h + 1.0 / 3.0), channel(h), channel(h - 1.0 / 3.0)], axis=-1)
        return np.clip(rgb, 0.0, 1.0).astype(np.float32)

    @staticmethod
    def _convolve_axis(mat: np.ndarray, kernel: np.ndarray, axis: int) -> np.ndarray:
        radius = len(kernel) // 2
        pad = [(0, 0)] * mat.ndim
        pad[axis] = (radius, radius)
        padded = np.pad(mat, pad, mode="edge")
        n = mat.shape[axis]
        out = np.zeros_like(mat)
        for i, weight in enumerate(kernel):
            window = [slice(None)] * mat.ndim
            window[axis] = slice(i, i + n)
            out += weight * padded[tuple(window)]
        return out

    @staticmethod
    def _clahe_channel(chan: np.ndarray, tile_w: int, tile_h: int, max_slope: float) -> np.ndarray:
        h, w = chan.shape
        tile_w = max(1, min(int(tile_w), w))
        tile_h = max(1, min(int(tile_h), h))
        ny = int(np.ceil(h / tile_h))
        nx = int(np.ceil(w / tile_w))
        levels = np.clip(np.rint(chan * 255.0), 0, 255).astype(np.int64)

        # per-tile histograms in one bincount: pad to whole tiles, then offset
        # each tile's values into its own 256-bin block
        padded = np.pad(levels, ((0, ny * tile_h - h), (0, nx * tile_w - w)), mode="edge")
        tiles = padded.reshape(ny, tile_h, nx, tile_w).transpose(0, 2, 1, 3).reshape(ny * nx, -1)
        offsets = (np.arange(ny * nx, dtype=np.int64) * 256)[:, None]
        hist = np.bincount((tiles + offsets).ravel(), minlength=ny * nx * 256)
        hist = hist.reshape(ny * nx, 256).astype(np.float64)

        if max_slope > 0:
            limit = max(1.0, float(max_slope) * tile_w * tile_h / 256.0)
            excess = np.clip(hist - limit, 0.0, None).sum(axis=1, keepdims=True)
            hist = np.minimum(hist, limit) + excess / 256.0
        cdf = np.cumsum(hist, axis=1)
        luts = np.rint(cdf / cdf[:, -1:] * 255.0).astype(np.uint8).reshape(ny, nx, 256)

        ys = (np.arange(h, dtype=np.float32) + 0.5) / tile_h - 0.5
        xs = (np.arange(w, dtype=np.float32) + 0.5) / tile_w - 0.5
        y0 = np.clip(np.floor(ys), 0, ny - 1).astype(np.int64)
        x0 = np.clip(np.floor(xs), 0, nx - 1).astype(np.int64)
        y1 = np.minimum(y0 + 1, ny - 1)
        x1 = np.minimum(x0 + 1, nx - 1)
        wy = np.clip(ys - y0, 0.0, 1.0)[:, None]
        wx = np.clip(xs - x0, 0.0, 1.0)[None, :]

        def sample(ty: np.ndarray, tx: np.ndarray) -> np.ndarray:
            return luts[ty[:, None], tx[None, :], levels].astype(np.float32)

        top = sample(y0, x0) * (1.0 - wx) + sample(y0, x1) * wx
        bottom = sample(y1, x0) * (1.0 - wx) + sample(y1, x1) * wx
        out = (top * (1.0 - wy) + bottom * wy) / 255.0
        return np.clip(out, 0.0, 1.0).astype(np.float32)


# Porter-Duff operators: (Fa, Fb) from source alpha `a_s` and destination alpha `a_b`
_PORTER_DUFF = {
    "clear": lambda a_s, a_b: (np.zeros_like(a_s), np.zeros_like(a_b)),
    "source": lambda a_s, a_b: (np.ones_like(a_s), np.zeros_like(a_b)),
    "over": lambda a_s, a_b: (np.ones_like(a_s), 1.0 - a_s),
    "in": lambda a_s, a_b: (a_b, np.zeros_like(a_b)),
    "out": lambda a_s, a_b: (1.0 - a_b, np.zeros_like(a_b)),
    "atop": lambda a_s, a_b: (a_b, 1.0 - a_s),
    "dest": lambda a_s, a_b: (np.zeros_like(a_s), np.ones_like(a_b)),
    "dest-over": lambda a_s, a_b: (1.0 - a_b, np.ones_like(a_b)),
    "dest-in": lambda a_s, a_b: (np.zeros_like(a_s), a_s),
    "dest-out": lambda a_s, a_b: (np.zeros_like(a_s), 1.0 - a_s),
    "dest-atop": lambda a_s, a_b: (1.0 - a_b, a_s),
    "xor": lambda a_s, a_b: (1.0 - a_b, 1.0 - a_s),
}


def _screen(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    return cb + cs - cb * cs


def _hard_light(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    return np.where(cs <= 0.5, cb * 2.0 * cs, _screen(cb, 2.0 * cs - 1.0))


def _colour_dodge(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    dodged = np.minimum(1.0, cb / np.maximum(1.0 - cs, _EPS))
    return np.where(cb <= 0.0, 0.0, np.where(cs >= 1.0, 1.0, dodged))


def _colour_burn(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    burned = 1.0 - np.minimum(1.0, (1.0 - cb) / np.maximum(cs, _EPS))
    return np.where(cb >= 1.0, 1.0, np.where(cs <= 0.0, 0.0, burned))


def _soft_light(cb: np.ndarray, cs: np.ndarray) -> np.ndarray:
    d = np.where(cb <= 0.25, ((16.0 * cb - 12.0) * cb + 4.0) * cb, np.sqrt(cb))
    return np.where(cs <= 0.5, cb - (1.0 - 2.0 * cs) * cb * (1.0 - cb), cb + (2.0 * cs - 1.0) * (d - cb))


# Separable blend functions B(Cb, Cs)
_BLEND = {
    "add": lambda cb, cs: np.minimum(1.0, cb + cs),
    "saturate": lambda cb, cs: np.minimum(1.0, cb + cs),
    "multiply": lambda cb, cs: cb * cs,
    "screen": _screen,
    "overlay": lambda cb, cs: _hard_light(cs, cb),
    "darken": np.minimum,
    "lighten": np.maximum,
    "colour-dodge": _colour_dodge,
    "colour-burn": _colour_burn,
    "hard-light": _hard_light,
    "soft-light": _soft_light,
    "difference": lambda cb, cs: np.abs(cb - cs),
    "exclusion": lambda cb, cs: cb + cs - 2.0 * cb * cs,
}
