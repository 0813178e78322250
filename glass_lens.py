#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
玻璃透镜合成器

在任意背景内容上叠加一个可拖动的圆形"玻璃透镜"，逐像素计算：
    斜面法线 -> Snell 折射 / 镜面反射 -> Schlick 菲涅耳混合
    -> 高光、投影、色散、磨砂模糊 -> 抗锯齿边缘合成

每个像素只依赖自身坐标、只读参数快照和只读背景，因此可以任意并行。

支持两种渲染框架：
- numpy: 纯 NumPy 实现，按行分块，线程池并行
- taichi: Taichi 框架（CPU/GPU），单个 kernel 覆盖全部像素
"""

import numpy as np
from PIL import Image, ImageDraw, ImageFont
import os
import time
import math
import argparse
import hashlib
import textwrap
from collections import namedtuple
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace as _dc_replace

# ============================================================================
# 公共常量
# ============================================================================

# 磨砂模糊每个方向的采样数，网格为 (2N+1)^2 = 625 个采样
BLUR_SAMPLES_PER_DIM = 12
# 透镜边缘抗锯齿过渡带宽度（归一化坐标）
EDGE_SOFTNESS = 0.01
# 投影圆相对透镜中心的偏移量（归一化坐标）
SHADOW_OFFSET_MAGNITUDE = 0.04
# 投影的软化距离
SHADOW_SOFTNESS = 0.15
# 高光锐度，越大斜面高光越窄
SHININESS = 200.0
# 扭曲偏移分母下限，避免掠射时偏移无界
DISTORTION_Z_FLOOR = 0.001

_LIGHT_NORM = math.sqrt(0.5 * 0.5 + 0.5 * 0.5 + 1.0)
# 光源方向（右上前方），投影与高光共用
LIGHT_DIR = (0.5 / _LIGHT_NORM, 0.5 / _LIGHT_NORM, 1.0 / _LIGHT_NORM)
# 观察方向（正交投影，垂直俯视屏幕）
VIEW_DIR = (0.0, 0.0, -1.0)

# 投影用的二维光照方向（未做宽高比修正）
_SHADOW_DIR_NORM = math.hypot(LIGHT_DIR[0], LIGHT_DIR[1])
SHADOW_DIR_2D = (LIGHT_DIR[0] / _SHADOW_DIR_NORM, LIGHT_DIR[1] / _SHADOW_DIR_NORM)

_VIEW = np.array(VIEW_DIR)
_LIGHT = np.array(LIGHT_DIR)
_FLAT_NORMAL = np.array([0.0, 0.0, 1.0])
for _const in (_VIEW, _LIGHT, _FLAT_NORMAL):
    _const.setflags(write=False)

RESOLUTIONS = {
    "4k": (3840, 2160),
    "fhd": (1920, 1080),
    "hd": (1280, 720),
    "sd": (640, 360),
    "square": (400, 400),
}

# 滑块取值范围（宿主交互时的合法区间）
SLIDER_RANGES = {
    "radius": (0.05, 0.5),
    "ior": (1.0, 2.0),
    "highlight_strength": (0.0, 2.0),
    "bevel_width": (0.0, 0.1),
    "thickness": (0.0, 0.1),
    "shadow_intensity": (0.0, 1.0),
    "chromatic_aberration": (0.0, 0.005),
    "frost_radius": (0.0, 0.02),
}

# ============================================================================
# 公共模块：参数快照
# ============================================================================

@dataclass(frozen=True)
class LensParams:
    """
    单帧参数快照（不可变）

    参数:
        resolution: 输出表面尺寸 (width_px, height_px)
        radius: 透镜半径（按高度归一化），(0, 0.5]
        center: 透镜中心（归一化），[0,1]x[0,1]
        ior: 折射率，>= 1
        highlight_strength: 斜面高光强度
        bevel_width: 斜面宽度，超过 radius 时内圆退化为空
        thickness: 玻璃厚度（影响折射偏移量）
        shadow_intensity: 投影强度，[0,1]
        chromatic_aberration: 色散强度
        frost_radius: 磨砂模糊半径（按高度归一化）

    合成器只读取，不修改；每次交互生成新快照。
    """
    resolution: tuple = (400, 400)
    radius: float = 0.15
    center: tuple = (0.5, 0.5)
    ior: float = 1.33
    highlight_strength: float = 1.0
    bevel_width: float = 0.02
    thickness: float = 0.05
    shadow_intensity: float = 0.1
    chromatic_aberration: float = 0.001
    frost_radius: float = 0.0

    def __post_init__(self):
        w, h = self.resolution
        cx, cy = self.center
        object.__setattr__(self, "resolution", (float(w), float(h)))
        object.__setattr__(self, "center", (float(cx), float(cy)))
        for name in SLIDER_RANGES:
            object.__setattr__(self, name, float(getattr(self, name)))

    @property
    def inner_radius(self):
        return max(self.radius - self.bevel_width, 0.0)

    @property
    def aspect(self):
        return self.resolution[0] / self.resolution[1]

    @property
    def size(self):
        """输出表面的整数像素尺寸 (width, height)"""
        return int(round(self.resolution[0])), int(round(self.resolution[1]))

    def replace(self, **changes):
        return _dc_replace(self, **changes)

    def validate(self):
        """
        宿主侧前置条件检查，不合法时抛出 ValueError。

        bevel_width > radius 不算错误：内核会把内圆半径钳到 0。
        """
        w, h = self.resolution
        if not (math.isfinite(w) and math.isfinite(h)) or w <= 0 or h <= 0:
            raise ValueError(f"resolution must be positive and finite, got {self.resolution}")
        cx, cy = self.center
        if not (math.isfinite(cx) and math.isfinite(cy)):
            raise ValueError(f"center must be finite, got {self.center}")
        if not (0.0 <= cx <= 1.0 and 0.0 <= cy <= 1.0):
            raise ValueError(f"center must lie in [0,1]x[0,1], got {self.center}")
        for name in SLIDER_RANGES:
            value = getattr(self, name)
            if not math.isfinite(value):
                raise ValueError(f"{name} must be finite, got {value}")
        if not 0.0 < self.radius <= 0.5:
            raise ValueError(f"radius must lie in (0, 0.5], got {self.radius}")
        if self.ior < 1.0:
            raise ValueError(f"ior must be >= 1.0, got {self.ior}")
        for name in ("highlight_strength", "bevel_width", "thickness",
                     "chromatic_aberration", "frost_radius"):
            if getattr(self, name) < 0.0:
                raise ValueError(f"{name} must be >= 0, got {getattr(self, name)}")
        if not 0.0 <= self.shadow_intensity <= 1.0:
            raise ValueError(f"shadow_intensity must lie in [0,1], got {self.shadow_intensity}")
        return self

    def clamped(self):
        """把所有滑块值钳到 SLIDER_RANGES，中心钳到 [0,1]^2"""
        changes = {name: min(max(getattr(self, name), lo), hi)
                   for name, (lo, hi) in SLIDER_RANGES.items()}
        cx, cy = self.center
        changes["center"] = (min(max(cx, 0.0), 1.0), min(max(cy, 0.0), 1.0))
        return self.replace(**changes)

    def with_center_px(self, x, y):
        """用像素坐标设置透镜中心（拖动手势），越界时贴边"""
        w, h = self.resolution
        x = min(max(float(x), 0.0), w)
        y = min(max(float(y), 0.0), h)
        return self.replace(center=(x / w, y / h))


# ============================================================================
# 公共模块：背景内容
# ============================================================================

class ContentField:
    """
    只读背景采样器：field(px, py) -> (..., 4) RGBA

    像素 (i, j) 的中心位于 (i + 0.5, j + 0.5)。

    参数:
        image: (H, W, 3|4) 数组，float 值域 [0,1] 或 uint8
        edge_mode: "clamp" 重复边缘像素，"transparent" 越界返回 (0,0,0,0)
        sampling: "bilinear" 或 "nearest"
    """

    EDGE_MODES = ("clamp", "transparent")
    SAMPLING_MODES = ("bilinear", "nearest")

    def __init__(self, image, edge_mode="clamp", sampling="bilinear"):
        image = np.asarray(image)
        if image.ndim != 3 or image.shape[2] not in (3, 4):
            raise ValueError(f"content must be an (H, W, 3|4) array, got shape {image.shape}")
        if edge_mode not in self.EDGE_MODES:
            raise ValueError(f"unknown edge_mode: {edge_mode}")
        if sampling not in self.SAMPLING_MODES:
            raise ValueError(f"unknown sampling: {sampling}")

        if image.dtype == np.uint8:
            image = image.astype(np.float32) / 255.0
        else:
            image = image.astype(np.float32)
        if image.shape[2] == 3:
            alpha = np.ones(image.shape[:2] + (1,), dtype=np.float32)
            image = np.concatenate([image, alpha], axis=2)

        image = np.ascontiguousarray(image)
        image.setflags(write=False)
        self.image = image
        self.height, self.width = image.shape[:2]
        self.edge_mode = edge_mode
        self.sampling = sampling

    def __call__(self, px, py):
        px, py = np.broadcast_arrays(np.asarray(px, dtype=np.float64),
                                     np.asarray(py, dtype=np.float64))
        if self.sampling == "nearest":
            ix = np.floor(np.clip(px, -1.0, self.width)).astype(np.int64)
            iy = np.floor(np.clip(py, -1.0, self.height)).astype(np.int64)
            return self._fetch(ix, iy)

        u = np.clip(px - 0.5, -2.0, self.width + 1.0)
        v = np.clip(py - 0.5, -2.0, self.height + 1.0)
        u0 = np.floor(u)
        v0 = np.floor(v)
        fu = (u - u0)[..., None]
        fv = (v - v0)[..., None]
        u0 = u0.astype(np.int64)
        v0 = v0.astype(np.int64)

        c00 = self._fetch(u0, v0)
        c10 = self._fetch(u0 + 1, v0)
        c01 = self._fetch(u0, v0 + 1)
        c11 = self._fetch(u0 + 1, v0 + 1)
        return (c00 * (1 - fu) * (1 - fv) +
                c10 * fu * (1 - fv) +
                c01 * (1 - fu) * fv +
                c11 * fu * fv)

    def _fetch(self, ix, iy):
        cx = np.clip(ix, 0, self.width - 1)
        cy = np.clip(iy, 0, self.height - 1)
        color = self.image[cy, cx].astype(np.float64)
        if self.edge_mode == "transparent":
            inside = (ix >= 0) & (ix < self.width) & (iy >= 0) & (iy < self.height)
            color = np.where(inside[..., None], color, 0.0)
        return color


_PARAGRAPH = (
    "Glass is an amorphous solid, meaning it lacks a long-range ordered atomic "
    "structure, unlike crystalline materials. This unique atomic arrangement gives "
    "rise to its characteristic properties. Optically, glass is often transparent "
    "due to the absence of grain boundaries that scatter light, and its refractive "
    "index can be engineered for various applications. Mechanically, it is brittle, "
    "exhibiting elastic deformation up to a certain point before sudden fracture "
    "without significant plastic deformation. Thermally, glass is a poor conductor "
    "of heat and undergoes a continuous softening as temperature increases."
)


def generate_background(width=400, height=400, seed=42, n_dots=40):
    """
    程序化生成背景内容（文字面板 + 棋盘格 + 彩色圆点）

    参数:
        width, height: 尺寸（像素）
        seed: 随机种子
        n_dots: 彩色圆点数量

    返回:
        (height, width, 4) float32 RGBA，值域 [0, 1]，alpha 全为 1
    """
    rng = np.random.default_rng(seed)

    # 浅紫底色 + 淡棋盘格，让折射偏移肉眼可见
    cell = max(8, min(width, height) // 16)
    ys, xs = np.mgrid[0:height, 0:width]
    checker = ((xs // cell + ys // cell) % 2).astype(np.float32)
    base = np.array([232, 222, 248], dtype=np.float32) / 255.0
    rgb = base[None, None, :] * (1.0 - 0.06 * checker[..., None])
    img = Image.fromarray((rgb * 255).astype(np.uint8), "RGB")

    draw = ImageDraw.Draw(img)
    for _ in range(n_dots):
        x, y = rng.uniform(0, width), rng.uniform(0, height)
        r = rng.uniform(3, max(4, min(width, height) / 25))
        color = tuple(int(c) for c in rng.integers(60, 230, 3))
        draw.ellipse((x - r, y - r, x + r, y + r), fill=color)

    font = ImageFont.load_default()
    ink = (29, 25, 43)
    pad = max(4, width // 25)

    # 标题：小图绘制后最近邻放大
    title = Image.new("RGB", (96, 28), (232, 222, 248))
    ImageDraw.Draw(title).multiline_text((1, 1), "GLASS\nPROPERTIES", fill=ink, font=font)
    scale = max(1, min(4, (width - 2 * pad) // 96))
    title = title.resize((96 * scale, 28 * scale), Image.Resampling.NEAREST)
    img.paste(title, (pad, pad))

    chars_per_line = max(10, (width - 2 * pad) // 6)
    top = pad + 28 * scale + 8
    for line in textwrap.wrap(_PARAGRAPH, chars_per_line):
        if top > height - 12:
            break
        draw.text((pad, top), line, fill=ink, font=font)
        top += 13

    rgba = np.concatenate([np.asarray(img, dtype=np.float32) / 255.0,
                           np.ones((height, width, 1), dtype=np.float32)], axis=2)
    return rgba


def load_or_generate_background(path, width, height, seed=42):
    """
    加载或生成背景内容

    参数:
        path: 图像路径，None 或文件不存在时程序生成
        width, height: 输出表面尺寸，加载的图像会缩放到该尺寸

    返回:
        (height, width, 4) float32 RGBA
    """
    if path and os.path.isfile(path):
        print(f"Loading background: {path}")
        img = Image.open(path).convert("RGBA")
        if img.size != (width, height):
            print(f"Resizing background {img.size[0]}x{img.size[1]} -> {width}x{height}")
            img = img.resize((width, height), Image.Resampling.BILINEAR)
        return np.asarray(img, dtype=np.float32) / 255.0

    if path:
        print(f"Background not found: {path}, generating procedural background...")
    else:
        print("Generating procedural background...")
    return generate_background(width, height, seed=seed)


# ============================================================================
# NumPy 合成器（逐像素纯函数，批量向量化）
# ============================================================================

def smoothstep(edge0, edge1, x):
    """GLSL smoothstep，edge0 > edge1 时反向；edge0 == edge1 时退化为阶跃"""
    x = np.asarray(x, dtype=np.float64)
    if edge0 == edge1:
        return np.where(x < edge0, 0.0, 1.0)
    t = np.clip((x - edge0) / (edge1 - edge0), 0.0, 1.0)
    return t * t * (3.0 - 2.0 * t)


def mix(a, b, t):
    return a * (1.0 - t) + b * t


def _dot(a, b):
    return np.sum(a * b, axis=-1)


def _normalize(v):
    """零向量保持为零，不产生 NaN"""
    n = np.linalg.norm(v, axis=-1, keepdims=True)
    return np.divide(v, n, out=np.zeros(np.broadcast(v, n).shape), where=n > 0)


def lens_geometry(coord, params):
    """
    像素坐标 -> 以透镜中心为原点、宽高比修正后的位置 p 及距离 d

    返回:
        p: (..., 2)
        d: (...,)
    """
    coord = np.asarray(coord, dtype=np.float64)
    w, h = params.resolution
    p = coord / np.array([w, h]) - np.array(params.center)
    p[..., 0] *= w / h
    d = np.hypot(p[..., 0], p[..., 1])
    return p, d


def surface_normal(p, d, params):
    """
    斜面法线场：内圆平坦 (0,0,1)，斜面带按四分之一圆弧过渡到接近水平

    bevel_width == 0 时在 d == radius 处瞬间切换，不做除法。
    """
    inner = params.inner_radius
    bevel = params.bevel_width
    if bevel > 0.0:
        t = np.clip((d - inner) / bevel, 0.0, 1.0)
    else:
        t = np.where(d >= params.radius, 1.0, 0.0)

    angle = t * np.pi * 0.5
    xy = _normalize(p) * np.sin(angle)[..., None]
    z = np.maximum(np.cos(angle), 0.0)
    bevelled = _normalize(np.concatenate([xy, z[..., None]], axis=-1))
    return np.where((d < inner)[..., None], _FLAT_NORMAL, bevelled)


def face_viewer(normal):
    """保证法线朝向观察者，返回 (normal, cos_theta_i)"""
    neg_view = -_VIEW
    cos_theta = _dot(normal, neg_view)
    normal = np.where((cos_theta < 0.0)[..., None], -normal, normal)
    return normal, _dot(normal, neg_view)


def refract(incident, normal, cos_theta, eta):
    """Snell 折射；k < 0（全反射）时返回零向量"""
    k = 1.0 - eta * eta * (1.0 - cos_theta * cos_theta)
    ray = eta * incident + (eta * cos_theta - np.sqrt(np.maximum(k, 0.0)))[..., None] * normal
    ray = np.where((k < 0.0)[..., None], 0.0, ray)
    return _normalize(ray)


def reflect(incident, normal):
    return incident - 2.0 * _dot(normal, incident)[..., None] * normal


def schlick_fresnel(cos_theta, ior):
    """Schlick 近似：R0 + (1 - R0)(1 - cos)^5"""
    r0 = ((1.0 - ior) / (1.0 + ior)) ** 2
    return r0 + (1.0 - r0) * (1.0 - np.asarray(cos_theta, dtype=np.float64)) ** 5


def distortion_offset(ray, normal_z, distortion, params):
    """采样偏移（像素）：ray.xy * thickness * H / max(n.z, 0.001) * distortion"""
    h = params.resolution[1]
    scale = params.thickness * h / np.maximum(normal_z, DISTORTION_Z_FLOOR) * distortion
    return ray[..., :2] * scale[..., None]


LensSurface = namedtuple("LensSurface", [
    "p", "d", "normal", "cos_theta", "refracted", "reflected",
    "fresnel", "distortion", "refraction_coord", "reflection_coord",
])


def surface_rays(coord, params):
    """一批像素的透镜表面几何与光线（折射/反射方向、菲涅耳权重、采样坐标）"""
    coord = np.asarray(coord, dtype=np.float64)
    p, d = lens_geometry(coord, params)
    normal, cos_theta = face_viewer(surface_normal(p, d, params))

    refracted = refract(_VIEW, normal, cos_theta, 1.0 / params.ior)
    reflected = reflect(_VIEW, normal)
    fresnel = schlick_fresnel(cos_theta, params.ior)

    # 内圆不扭曲，扭曲集中在斜面
    distortion = smoothstep(params.inner_radius, params.radius, d)
    normal_z = normal[..., 2]
    refraction_coord = coord + distortion_offset(refracted, normal_z, distortion, params)
    reflection_coord = coord + distortion_offset(reflected, normal_z, distortion, params)

    return LensSurface(p, d, normal, cos_theta, refracted, reflected,
                       fresnel, distortion, refraction_coord, reflection_coord)


def sample_blurred(sample, px, py, blur_radius_px):
    """
    磨砂模糊采样：(2N+1)^2 网格等权平均

    blur_radius_px <= 0 时只做一次直接采样，不评估网格。
    """
    if blur_radius_px <= 0.0:
        return sample(px, py)

    n = BLUR_SAMPLES_PER_DIM
    step = blur_radius_px / n
    total = 0.0
    for i in range(-n, n + 1):
        for j in range(-n, n + 1):
            total = total + sample(px + i * step, py + j * step)
    return total / float((2 * n + 1) ** 2)


def sample_refraction(sample, coord, refracted, params):
    """折射采样，色散强度 > 0 时 R/G/B 分别在 +ab / 0 / -ab 处采样，alpha 取 G"""
    h = params.resolution[1]
    blur_px = params.frost_radius * h
    x, y = coord[..., 0], coord[..., 1]

    if params.chromatic_aberration > 0.0:
        ab = refracted[..., :2] * params.chromatic_aberration * h
        r_sample = sample_blurred(sample, x + ab[..., 0], y + ab[..., 1], blur_px)
        g_sample = sample_blurred(sample, x, y, blur_px)
        b_sample = sample_blurred(sample, x - ab[..., 0], y - ab[..., 1], blur_px)
        return np.stack([r_sample[..., 0], g_sample[..., 1],
                         b_sample[..., 2], g_sample[..., 3]], axis=-1)

    return sample_blurred(sample, x, y, blur_px)


def shadow_amount(p, params):
    """投影强度：投影圆沿光照反方向偏移，越远离投影圆越暗"""
    light_2d = np.array([SHADOW_DIR_2D[0] * params.aspect, SHADOW_DIR_2D[1]])
    offset = -light_2d * SHADOW_OFFSET_MAGNITUDE
    shadow_dist = np.hypot(p[..., 0] - offset[0], p[..., 1] - offset[1]) - params.radius
    return smoothstep(0.0, SHADOW_SOFTNESS, shadow_dist) * params.shadow_intensity


def background_with_shadow(bg, amount):
    """背景与黑色（保留原 alpha）按投影强度混合"""
    shadow = np.zeros_like(bg)
    shadow[..., 3] = bg[..., 3]
    return mix(bg, shadow, np.asarray(amount)[..., None])


def specular_highlight(normal, d, params):
    """斜面高光强度（仅斜面带可见），加到玻璃 RGB 上"""
    spec_dir = reflect(-_LIGHT, normal)
    base = np.maximum(0.0, _dot(spec_dir, -_VIEW)) ** SHININESS
    mask = smoothstep(params.radius - params.bevel_width, params.radius, d)
    return base * params.highlight_strength * mask


def _glass_color(coord, shaded, params, sample):
    surface = surface_rays(coord, params)

    refracted_color = sample_refraction(sample, surface.refraction_coord, surface.refracted, params)
    # 反射不做模糊和色散
    reflected_color = np.asarray(sample(surface.reflection_coord[..., 0],
                                        surface.reflection_coord[..., 1]), dtype=np.float64)

    specular = specular_highlight(surface.normal, surface.d, params)
    rgb = mix(refracted_color[..., :3], reflected_color[..., :3], surface.fresnel[..., None])
    rgb = rgb + specular[..., None]
    glass = np.concatenate([rgb, refracted_color[..., 3:4]], axis=-1)

    edge = smoothstep(EDGE_SOFTNESS, -EDGE_SOFTNESS, surface.d - params.radius)
    return mix(shaded, glass, edge[..., None])


def compose(coord, params, sample):
    """
    逐像素合成（纯函数）

    参数:
        coord: (..., 2) 像素坐标（像素中心为 i + 0.5）
        params: LensParams
        sample: 背景采样器 sample(px, py) -> (..., 4)

    返回:
        (..., 4) RGBA，未钳位

    d >= radius + EDGE_SOFTNESS 的像素只输出带投影的背景；
    边缘过渡带内玻璃色与背景按 smoothstep 混合，保证连续。
    """
    coord = np.asarray(coord, dtype=np.float64)
    out_shape = coord.shape[:-1] + (4,)
    coord = coord.reshape(-1, 2)

    p, d = lens_geometry(coord, params)
    bg = np.asarray(sample(coord[:, 0], coord[:, 1]), dtype=np.float64)
    out = background_with_shadow(bg, shadow_amount(p, params))

    glass_mask = d < params.radius + EDGE_SOFTNESS
    if np.any(glass_mask):
        out[glass_mask] = _glass_color(coord[glass_mask], out[glass_mask], params, sample)
    return out.reshape(out_shape)


def pixel_grid(width, height, row_start=0, row_stop=None):
    """像素中心坐标网格，返回 (rows, width, 2)"""
    if row_stop is None:
        row_stop = height
    ys, xs = np.mgrid[row_start:row_stop, 0:width]
    return np.stack([xs + 0.5, ys + 0.5], axis=-1).astype(np.float64)


def render_frame(params, content, workers=1, tile_rows=64, cancelled=None):
    """
    渲染整帧（按行分块，可多线程）

    参数:
        params: LensParams
        content: 背景采样器（ContentField 或任意 sample(px, py) 可调用对象）
        workers: 线程数
        tile_rows: 每块行数
        cancelled: 可选回调，返回 True 时丢弃整帧

    返回:
        (height, width, 4) float32；被取消时返回 None，不暴露半成品
    """
    width, height = params.size
    tiles = [(start, min(start + tile_rows, height)) for start in range(0, height, tile_rows)]
    frame = np.empty((height, width, 4), dtype=np.float32)

    def render_tile(tile):
        if cancelled is not None and cancelled():
            return False
        start, stop = tile
        frame[start:stop] = compose(pixel_grid(width, height, start, stop), params, content)
        return True

    if workers <= 1:
        for tile in tiles:
            if not render_tile(tile):
                return None
        return frame

    with ThreadPoolExecutor(max_workers=workers) as pool:
        done = list(pool.map(render_tile, tiles))
    if not all(done):
        return None
    return frame


class NumpyLensRenderer:
    """
    NumPy 渲染器，接口与 TaichiLensRenderer 一致。

    用法:
        renderer = NumpyLensRenderer(background, workers=4)
        img = renderer.render(params)
    """

    def __init__(self, content, workers=1, tile_rows=64, edge_mode="clamp"):
        if not isinstance(content, ContentField):
            content = ContentField(content, edge_mode=edge_mode)
        self.content = content
        self.workers = workers
        self.tile_rows = tile_rows

    def render(self, params, cancelled=None):
        return render_frame(params, self.content, workers=self.workers,
                            tile_rows=self.tile_rows, cancelled=cancelled)


# ============================================================================
# Taichi 渲染器（类封装，支持反复调用）
# ============================================================================

class TaichiLensRenderer:
    """
    Taichi 渲染器类，kernel 仅编译一次，支持多帧渲染。

    用法:
        renderer = TaichiLensRenderer(width, height, background)
        img1 = renderer.render(params)
        img2 = renderer.render(params.with_center_px(120, 80))
    """

    def __init__(self, width, height, content, device="cpu", edge_mode="clamp"):
        import taichi as ti
        self.ti = ti
        self.width = width
        self.height = height

        if not isinstance(content, ContentField):
            content = ContentField(content, edge_mode=edge_mode)
        self.edge_mode = content.edge_mode

        ti.init(arch=ti.cpu if device == "cpu" else ti.gpu, offline_cache=False)

        tex_h, tex_w = content.image.shape[:2]
        self.tex_w = tex_w
        self.tex_h = tex_h

        self.content_field = ti.Vector.field(4, dtype=ti.f32, shape=(tex_h, tex_w))
        self.content_field.from_numpy(np.ascontiguousarray(content.image))

        self.image_field = ti.Vector.field(4, dtype=ti.f32, shape=(width, height))

        self._compile_kernels()

    def _compile_kernels(self):
        ti = self.ti
        tex_w, tex_h = self.tex_w, self.tex_h
        content_field = self.content_field
        transparent = self.edge_mode == "transparent"

        @ti.func
        def smoothstep_ti(e0, e1, x):
            result = 0.0
            if e0 == e1:
                if x >= e0:
                    result = 1.0
            else:
                t = ti.min(ti.max((x - e0) / (e1 - e0), 0.0), 1.0)
                result = t * t * (3.0 - 2.0 * t)
            return result

        @ti.func
        def safe_normalize(v):
            n = v.norm()
            out = v * 0.0
            if n > 0.0:
                out = v / n
            return out

        @ti.func
        def fetch(ix, iy):
            color = ti.Vector([0.0, 0.0, 0.0, 0.0])
            cx = ti.min(ti.max(ix, 0), tex_w - 1)
            cy = ti.min(ti.max(iy, 0), tex_h - 1)
            if ti.static(transparent):
                if ix >= 0 and ix < tex_w and iy >= 0 and iy < tex_h:
                    color = content_field[cy, cx]
            else:
                color = content_field[cy, cx]
            return color

        @ti.func
        def sample(coord):
            # 双线性插值，像素中心对齐
            u = ti.min(ti.max(coord[0] - 0.5, -2.0), ti.cast(tex_w, ti.f32) + 1.0)
            v = ti.min(ti.max(coord[1] - 0.5, -2.0), ti.cast(tex_h, ti.f32) + 1.0)
            u0 = ti.cast(ti.floor(u), ti.i32)
            v0 = ti.cast(ti.floor(v), ti.i32)
            fu = u - ti.cast(u0, ti.f32)
            fv = v - ti.cast(v0, ti.f32)
            c00 = fetch(u0, v0)
            c10 = fetch(u0 + 1, v0)
            c01 = fetch(u0, v0 + 1)
            c11 = fetch(u0 + 1, v0 + 1)
            return (c00 * (1 - fu) * (1 - fv) +
                    c10 * fu * (1 - fv) +
                    c01 * (1 - fu) * fv +
                    c11 * fu * fv)

        @ti.func
        def sample_blurred_ti(coord, blur_px):
            color = ti.Vector([0.0, 0.0, 0.0, 0.0])
            if blur_px <= 0.0:
                color = sample(coord)
            else:
                step = blur_px / BLUR_SAMPLES_PER_DIM
                for i in range(-BLUR_SAMPLES_PER_DIM, BLUR_SAMPLES_PER_DIM + 1):
                    for j in range(-BLUR_SAMPLES_PER_DIM, BLUR_SAMPLES_PER_DIM + 1):
                        offset = ti.Vector([ti.cast(i, ti.f32), ti.cast(j, ti.f32)]) * step
                        color += sample(coord + offset)
                color /= ti.cast((2 * BLUR_SAMPLES_PER_DIM + 1) ** 2, ti.f32)
            return color

        @ti.kernel
        def lens_kernel(image_field: ti.template(), res_x: ti.f32, res_y: ti.f32,
                        radius: ti.f32, center_x: ti.f32, center_y: ti.f32, ior: ti.f32,
                        highlight: ti.f32, bevel: ti.f32, thickness: ti.f32,
                        shadow_intensity: ti.f32, chroma: ti.f32, frost: ti.f32):
            aspect = res_x / res_y
            inner = ti.max(radius - bevel, 0.0)
            view = ti.Vector([VIEW_DIR[0], VIEW_DIR[1], VIEW_DIR[2]])
            light = ti.Vector([LIGHT_DIR[0], LIGHT_DIR[1], LIGHT_DIR[2]])
            shadow_offset = -ti.Vector([SHADOW_DIR_2D[0] * aspect, SHADOW_DIR_2D[1]]) * SHADOW_OFFSET_MAGNITUDE
            blur_px = frost * res_y
            eta = 1.0 / ior
            r0 = ((1.0 - ior) / (1.0 + ior)) ** 2

            for i, j in image_field:
                frag = ti.Vector([ti.cast(i, ti.f32) + 0.5, ti.cast(j, ti.f32) + 0.5])
                p = ti.Vector([frag[0] / res_x - center_x, frag[1] / res_y - center_y])
                p[0] *= aspect
                d = p.norm()

                # 投影
                shadow_dist = (p - shadow_offset).norm() - radius
                amount = smoothstep_ti(0.0, SHADOW_SOFTNESS, shadow_dist) * shadow_intensity
                bg = sample(frag)
                shadow_color = ti.Vector([0.0, 0.0, 0.0, bg[3]])
                shaded = bg * (1.0 - amount) + shadow_color * amount
                color = shaded

                if d < radius + EDGE_SOFTNESS:
                    # 斜面法线
                    normal = ti.Vector([0.0, 0.0, 1.0])
                    if d >= inner:
                        t = 0.0
                        if bevel > 0.0:
                            t = ti.min(ti.max((d - inner) / bevel, 0.0), 1.0)
                        elif d >= radius:
                            t = 1.0
                        angle = t * math.pi * 0.5
                        xy = safe_normalize(p) * ti.sin(angle)
                        normal = safe_normalize(ti.Vector([xy[0], xy[1], ti.max(ti.cos(angle), 0.0)]))

                    cos_i = -view.dot(normal)
                    if cos_i < 0.0:
                        normal = -normal
                        cos_i = -view.dot(normal)

                    # 折射 / 反射 / 菲涅耳
                    k = 1.0 - eta * eta * (1.0 - cos_i * cos_i)
                    refracted = ti.Vector([0.0, 0.0, 0.0])
                    if k >= 0.0:
                        refracted = safe_normalize(eta * view + (eta * cos_i - ti.sqrt(k)) * normal)
                    reflected = view - 2.0 * normal.dot(view) * normal
                    fresnel = r0 + (1.0 - r0) * ti.pow(1.0 - cos_i, 5.0)

                    distortion = smoothstep_ti(inner, radius, d)
                    scale = thickness * res_y / ti.max(normal[2], DISTORTION_Z_FLOOR) * distortion
                    refract_coord = frag + ti.Vector([refracted[0], refracted[1]]) * scale
                    reflect_coord = frag + ti.Vector([reflected[0], reflected[1]]) * scale

                    refracted_color = ti.Vector([0.0, 0.0, 0.0, 0.0])
                    if chroma > 0.0:
                        ab = ti.Vector([refracted[0], refracted[1]]) * chroma * res_y
                        r_sample = sample_blurred_ti(refract_coord + ab, blur_px)
                        g_sample = sample_blurred_ti(refract_coord, blur_px)
                        b_sample = sample_blurred_ti(refract_coord - ab, blur_px)
                        refracted_color = ti.Vector([r_sample[0], g_sample[1], b_sample[2], g_sample[3]])
                    else:
                        refracted_color = sample_blurred_ti(refract_coord, blur_px)
                    reflected_color = sample(reflect_coord)

                    # 斜面高光
                    spec_dir = -light - 2.0 * normal.dot(-light) * normal
                    specular = ti.pow(ti.max(0.0, spec_dir.dot(-view)), SHININESS)
                    specular *= highlight * smoothstep_ti(radius - bevel, radius, d)

                    glass = refracted_color * (1.0 - fresnel) + reflected_color * fresnel
                    glass += ti.Vector([specular, specular, specular, 0.0])
                    glass[3] = refracted_color[3]

                    edge = smoothstep_ti(EDGE_SOFTNESS, -EDGE_SOFTNESS, d - radius)
                    color = shaded * (1.0 - edge) + glass * edge

                image_field[i, j] = color

        self._lens_kernel = lens_kernel

    def render(self, params, cancelled=None):
        """
        渲染单帧图像。

        参数:
            params: LensParams，分辨率需与渲染器尺寸一致
            cancelled: 可选回调，kernel 结束后返回 True 时丢弃该帧

        返回:
            (height, width, 4) RGBA 图像
        """
        if params.size != (self.width, self.height):
            raise ValueError(
                f"params resolution {params.size} does not match renderer {self.width}x{self.height}")
        w, h = params.resolution
        cx, cy = params.center
        self._lens_kernel(
            self.image_field, float(w), float(h), params.radius, cx, cy, params.ior,
            params.highlight_strength, params.bevel_width, params.thickness,
            params.shadow_intensity, params.chromatic_aberration, params.frost_radius
        )
        if cancelled is not None and cancelled():
            return None
        return self.image_field.to_numpy().transpose(1, 0, 2)


# ============================================================================
# 公共模块：图像保存与动画
# ============================================================================

def save_image(image, path):
    """保存图像为 PNG 文件（RGBA 或 RGB）"""
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    img_uint8 = (np.clip(image, 0, 1) * 255).astype(np.uint8)
    mode = "RGBA" if img_uint8.shape[2] == 4 else "RGB"
    Image.fromarray(img_uint8, mode).save(path)
    print(f"Saved: {path}")


def orbit_center(frame, n_frames, orbit_radius, base_center=(0.5, 0.5)):
    """第 frame 帧时透镜中心：绕 base_center 匀速转一圈，钳到 [0,1]^2"""
    angle = 2 * np.pi * frame / n_frames
    x = base_center[0] + orbit_radius * np.cos(angle)
    y = base_center[1] + orbit_radius * np.sin(angle)
    return (float(np.clip(x, 0.0, 1.0)), float(np.clip(y, 0.0, 1.0)))


def render_video(renderer, params, n_frames, fps, output_path,
                 orbit_radius=0.2, resume=False):
    """
    渲染视频（透镜沿圆周拖动，多帧合成视频）。

    参数:
        renderer: NumpyLensRenderer 或 TaichiLensRenderer
        params: 基础 LensParams，center 作为轨道中心
        n_frames: 帧数
        fps: 帧率
        output_path: 输出视频路径
        orbit_radius: 透镜中心的轨道半径（归一化）
        resume: 是否尝试从断点恢复
    """
    import imageio.v3 as iio
    import json
    import shutil

    os.makedirs(os.path.dirname(output_path) or ".", exist_ok=True)

    temp_dir_name = ".frames_" + hashlib.md5(output_path.encode()).hexdigest()[:16]
    temp_dir = os.path.join(os.path.dirname(output_path), temp_dir_name)
    progress_file = os.path.join(temp_dir, "progress.json")

    progress_params = {
        "n_frames": n_frames,
        "orbit_radius": orbit_radius,
        "params": repr(params),
    }

    completed = set()
    if resume and os.path.isdir(temp_dir) and os.path.isfile(progress_file):
        with open(progress_file, "r") as f:
            saved = json.load(f)
        if saved.get("params", {}) != progress_params:
            print("Warning: parameters changed, starting over")
            shutil.rmtree(temp_dir)
            os.makedirs(temp_dir, exist_ok=True)
        else:
            completed = set(saved.get("completed", []))
            print(f"Resuming: {len(completed)}/{n_frames} frames already rendered")
    else:
        os.makedirs(temp_dir, exist_ok=True)

    total_t0 = time.time()
    rendered_this_session = 0

    for frame in range(n_frames):
        if frame in completed:
            continue

        frame_params = params.replace(
            center=orbit_center(frame, n_frames, orbit_radius, params.center))

        t0 = time.time()
        img = renderer.render(frame_params)
        elapsed = time.time() - t0
        rendered_this_session += 1

        frame_path = os.path.join(temp_dir, f"frame_{frame:04d}.png")
        img_uint8 = (np.clip(img[..., :3], 0, 1) * 255).astype(np.uint8)
        Image.fromarray(img_uint8, "RGB").save(frame_path)

        completed.add(frame)
        if rendered_this_session % 10 == 0 or frame == n_frames - 1:
            with open(progress_file, "w") as f:
                json.dump({"params": progress_params, "completed": sorted(completed)}, f)

        if rendered_this_session % 100 == 0 or frame == n_frames - 1:
            eta = (time.time() - total_t0) / rendered_this_session * (n_frames - len(completed))
            print(f"  frame {frame}/{n_frames} {elapsed:.2f}s, done {len(completed)}/{n_frames}, ETA {eta/60:.0f}min")

    if len(completed) < n_frames:
        print(f"Warning: only {len(completed)}/{n_frames} frames completed. Run again to resume.")
        return

    print(f"\nAll frames rendered in {(time.time() - total_t0)/60:.1f} min")

    print(f"Assembling video: {output_path} ({fps} fps, {n_frames/fps:.0f}s)...")
    writer = iio.imopen(output_path, "w", plugin="pyav")
    writer.init_video_stream("libx264", fps=fps)

    for frame in range(n_frames):
        frame_path = os.path.join(temp_dir, f"frame_{frame:04d}.png")
        writer.write_frame(iio.imread(frame_path))
        os.remove(frame_path)

    writer.close()
    shutil.rmtree(temp_dir)
    print(f"Video saved: {output_path}")


# ============================================================================
# 主入口
# ============================================================================

def parse_args(argv=None):
    defaults = LensParams()
    parser = argparse.ArgumentParser(description="玻璃透镜合成器")
    parser.add_argument("--resolution", "-r", type=str, default="square",
                        choices=sorted(RESOLUTIONS),
                        help="分辨率: 4k/fhd/hd/sd/square (default: square)")
    parser.add_argument("--background", "-b", type=str, default=None,
                        help="背景图像路径 (default: 程序生成)")
    parser.add_argument("--output", "-o", type=str, default="output/glass.png",
                        help="输出路径 (default: output/glass.png)")
    parser.add_argument("--center", type=float, nargs=2, default=list(defaults.center),
                        metavar=("X", "Y"),
                        help="透镜中心，归一化 (default: 0.5 0.5)")
    parser.add_argument("--radius", type=float, default=defaults.radius,
                        help=f"透镜半径 (default: {defaults.radius})")
    parser.add_argument("--ior", type=float, default=defaults.ior,
                        help=f"折射率 (default: {defaults.ior})")
    parser.add_argument("--highlight", type=float, default=defaults.highlight_strength,
                        help=f"高光强度 (default: {defaults.highlight_strength})")
    parser.add_argument("--bevel", type=float, default=defaults.bevel_width,
                        help=f"斜面宽度 (default: {defaults.bevel_width})")
    parser.add_argument("--thickness", type=float, default=defaults.thickness,
                        help=f"玻璃厚度 (default: {defaults.thickness})")
    parser.add_argument("--shadow", type=float, default=defaults.shadow_intensity,
                        help=f"投影强度 (default: {defaults.shadow_intensity})")
    parser.add_argument("--chromatic", type=float, default=defaults.chromatic_aberration,
                        help=f"色散强度 (default: {defaults.chromatic_aberration})")
    parser.add_argument("--frost", type=float, default=defaults.frost_radius,
                        help=f"磨砂模糊半径 (default: {defaults.frost_radius})")
    parser.add_argument("--clamp", action="store_true",
                        help="把参数钳到滑块范围，而不是校验失败")
    parser.add_argument("--edge_mode", type=str, default="clamp",
                        choices=list(ContentField.EDGE_MODES),
                        help="越界采样方式 (default: clamp)")
    parser.add_argument("--backend", type=str, default="numpy",
                        choices=["numpy", "taichi"],
                        help="渲染框架 (default: numpy)")
    parser.add_argument("--device", "-d", type=str, default="cpu",
                        choices=["cpu", "gpu"],
                        help="Taichi 设备: cpu 或 gpu (default: cpu)")
    parser.add_argument("--workers", "-w", type=int, default=os.cpu_count() or 1,
                        help="NumPy 分块渲染线程数 (default: CPU 核数)")
    parser.add_argument("--video", action="store_true",
                        help="视频模式：透镜沿圆周移动，渲染多帧并合成视频")
    parser.add_argument("--orbit_radius", type=float, default=0.2,
                        help="视频模式：透镜中心轨道半径 (default: 0.2)")
    parser.add_argument("--n_frames", type=int, default=360,
                        help="视频帧数 (default: 360, 仅 --video 有效)")
    parser.add_argument("--fps", type=int, default=30,
                        help="视频帧率 (default: 30, 仅 --video 有效)")
    parser.add_argument("--resume", action="store_true",
                        help="视频模式：尝试从断点恢复（默认从头开始）")
    return parser.parse_args(argv)


def params_from_args(args):
    width, height = RESOLUTIONS[args.resolution]
    params = LensParams(
        resolution=(width, height),
        radius=args.radius,
        center=tuple(args.center),
        ior=args.ior,
        highlight_strength=args.highlight,
        bevel_width=args.bevel,
        thickness=args.thickness,
        shadow_intensity=args.shadow,
        chromatic_aberration=args.chromatic,
        frost_radius=args.frost,
    )
    if args.clamp:
        params = params.clamped()
    return params.validate()


def build_renderer(args, background):
    width, height = RESOLUTIONS[args.resolution]
    if args.backend == "taichi":
        return TaichiLensRenderer(width, height, background,
                                  device=args.device, edge_mode=args.edge_mode)
    return NumpyLensRenderer(background, workers=args.workers, edge_mode=args.edge_mode)


def main(argv=None):
    args = parse_args(argv)
    params = params_from_args(args)
    width, height = params.size

    background = load_or_generate_background(args.background, width, height)
    renderer = build_renderer(args, background)

    if args.video:
        print(f"Rendering video: {args.n_frames} frames at {width}x{height}")
        print(f"  backend={args.backend}, orbit_radius={args.orbit_radius}, fps={args.fps}")
        render_video(
            renderer, params,
            n_frames=args.n_frames, fps=args.fps, output_path=args.output,
            orbit_radius=args.orbit_radius, resume=args.resume
        )
        return

    t0 = time.time()
    print(f"{args.backend}: {width}x{height}, center={list(params.center)}, radius={params.radius}, ior={params.ior}")
    img = renderer.render(params)
    print(f"Done in {time.time() - t0:.1f}s")
    save_image(img, args.output)


if __name__ == "__main__":
    main()
