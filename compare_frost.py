#!/usr/bin/env python3
"""
磨砂对比脚本：生成左右拼接的对比图（透明玻璃 vs 磨砂玻璃）
"""

import argparse
import subprocess
import sys
import os
from PIL import Image, ImageDraw, ImageFont

from glass_lens import RESOLUTIONS


def run_render(resolution, center, radius, frost, output, background=None, backend="numpy"):
    cmd = [
        sys.executable, "glass_lens.py",
        "--resolution", resolution,
        "--center", str(center[0]), str(center[1]),
        "--radius", str(radius),
        "--frost", str(frost),
        "--backend", backend,
        "-o", output,
    ]
    if background:
        cmd.extend(["--background", background])

    print(f"Running: {' '.join(cmd)}")
    subprocess.run(cmd, check=True)


def crop_lens(img, center, radius):
    """裁剪透镜所在的方块（半径按高度归一化）"""
    w, h = img.size
    half = int(radius * h * 1.2)
    cx, cy = int(center[0] * w), int(center[1] * h)
    return img.crop((cx - half, cy - half, cx + half, cy + half))


def compare_frost(resolution="square", frost=0.01, center=(0.5, 0.5), radius=0.25,
                  background=None, backend="numpy"):
    """生成磨砂对比图"""
    if resolution not in RESOLUTIONS:
        raise ValueError(f"unknown resolution: {resolution}")

    output_dir = "output"
    os.makedirs(output_dir, exist_ok=True)

    clear_file = f"{output_dir}/compare_clear_{resolution}.png"
    frost_file = f"{output_dir}/compare_frost_{resolution}_f{frost}.png"
    result_file = f"{output_dir}/compare_result_{resolution}_f{frost}.png"

    print("\n=== Rendering clear glass ===")
    run_render(resolution, center, radius, 0.0, clear_file, background, backend)

    print(f"\n=== Rendering frosted glass (frost={frost}) ===")
    run_render(resolution, center, radius, frost, frost_file, background, backend)

    crop_clear = crop_lens(Image.open(clear_file).convert("RGB"), center, radius)
    crop_frost = crop_lens(Image.open(frost_file).convert("RGB"), center, radius)
    crop_w, crop_h = crop_clear.size

    # 左右拼接
    result = Image.new("RGB", (crop_w * 2, crop_h))
    result.paste(crop_clear, (0, 0))
    result.paste(crop_frost, (crop_w, 0))

    draw = ImageDraw.Draw(result)
    font = ImageFont.load_default()
    draw.text((10, 10), "Clear", fill="black", font=font)
    draw.text((crop_w + 10, 10), f"Frost (r={frost})", fill="black", font=font)

    result.save(result_file)
    print(f"\n=== Result saved: {result_file} ===")

    return result_file


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="磨砂对比脚本")
    parser.add_argument("--resolution", "-r", default="square", choices=sorted(RESOLUTIONS))
    parser.add_argument("--frost", "-f", type=float, default=0.01, help="磨砂模糊半径")
    parser.add_argument("--center", type=float, nargs=2, default=[0.5, 0.5])
    parser.add_argument("--radius", type=float, default=0.25)
    parser.add_argument("--background", "-b", default=None)
    parser.add_argument("--backend", default="numpy", choices=["numpy", "taichi"])

    args = parser.parse_args()

    compare_frost(
        resolution=args.resolution,
        frost=args.frost,
        center=tuple(args.center),
        radius=args.radius,
        background=args.background,
        backend=args.backend,
    )
