"""Portrait export geometry."""
import logging
from typing import Any, Dict, List, Optional

from highlighter.models.clip import Clip
from highlighter.models.export import ExportOptions

logger = logging.getLogger(__name__)

# Share of the portrait frame given to the webcam when one is detected
WEBCAM_HEIGHT_RATIO = 1 / 3


def _round_even(value: float) -> int:
    rounded = int(round(value))
    return rounded if rounded % 2 == 0 else rounded + 1


def center_crop_filter(width: int, height: int) -> str:
    """Scale to the output height and keep the horizontal center."""
    return f"[in]scale=-2:{height},crop={width}:{height},setsar=1[out]"


def webcam_stack_filter(
    input_label: str,
    output_label: str,
    width: int,
    height: int,
    crop: Dict[str, Any],
) -> str:
    """
    Put the webcam region on top and the center of the gameplay below it.

    Args:
        input_label: Filter input, e.g. "0:v"
        output_label: Filter output label
        width: Output width
        height: Output height
        crop: Webcam region in source pixels with x, y, width and height

    Returns:
        Filtergraph fragment
    """
    cam_height = _round_even(height * WEBCAM_HEIGHT_RATIO)
    game_height = height - cam_height
    prefix = output_label
    return (
        f"[{input_label}]split=2[{prefix}cam][{prefix}game];"
        f"[{prefix}cam]crop={int(crop['width'])}:{int(crop['height'])}:{int(crop['x'])}:{int(crop['y'])},"
        f"scale={width}:{cam_height},setsar=1[{prefix}cams];"
        f"[{prefix}game]scale=-2:{game_height},crop={width}:{game_height},setsar=1[{prefix}games];"
        f"[{prefix}cams][{prefix}games]vstack[{output_label}]"
    )


def clip_filter(
    input_label: str,
    output_label: str,
    options: ExportOptions,
    crop: Optional[Dict[str, Any]] = None,
) -> str:
    """Portrait filter for one clip input."""
    if crop:
        return webcam_stack_filter(input_label, output_label, options.width, options.height, crop)
    graph = options.complex_filter or center_crop_filter(options.width, options.height)
    return graph.replace("[in]", f"[{input_label}]").replace("[out]", f"[{output_label}]")


def _webcam_crop(clip: Optional[Clip]) -> Optional[Dict[str, Any]]:
    if clip is None or not clip.is_ai_clip:
        return None
    coordinates = clip.ai_info.metadata.get("webcam_coordinates")
    if not coordinates:
        return None
    try:
        x1, y1 = float(coordinates["x1"]), float(coordinates["y1"])
        x2, y2 = float(coordinates["x2"]), float(coordinates["y2"])
    except (KeyError, TypeError, ValueError):
        logger.warning(f"Ignoring malformed webcam coordinates for {clip.path}")
        return None
    if x2 <= x1 or y2 <= y1:
        return None
    return {
        "x": x1,
        "y": y1,
        "width": _round_even(x2 - x1),
        "height": _round_even(y2 - y1),
    }


def add_vertical_filter(
    clips: Dict[str, Clip],
    rendering_clips: List,
    options: ExportOptions,
) -> ExportOptions:
    """
    Switch export options to portrait and attach per-clip crops.

    Width and height are swapped. Clips with detected webcam coordinates get
    a webcam-over-gameplay layout, the rest are center cropped.
    """
    options.width, options.height = options.height, options.width
    options.complex_filter = center_crop_filter(options.width, options.height)

    for rendering_clip in rendering_clips:
        rendering_clip.crop = _webcam_crop(clips.get(rendering_clip.path))

    logger.info(f"Vertical export at {options.width}x{options.height}")
    return options
