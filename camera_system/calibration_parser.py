"""
Calibration file parser module.

Reads camera calibrations from three dialects:

Native (ParameterList XML):
    Marker parameter DICe_XML_Calibration_File, a system_type_3D string,
    densely numbered "CAMERA i" sublists and optional user transforms.

VIC3D (.xml):
    Tag-delimited records. One POLYGONMASK record gives the image size and
    exactly two CAMERA records give intrinsics and orientation:

        <POLYGONMASK WIDTH="1280" HEIGHT="1024"/>
        <CAMERA ID="0">CX CY FX FY FS K1 K2 K3 <ORIENTATION>A B G TX TY TZ</ORIENTATION></CAMERA>

Legacy text (.txt):
    One value per line, '#' comments ignored. 24 values when camera 1's
    rotation is given as Euler angles, 30 when it is a full matrix:

        8 x camera 0 intrinsics   (CX CY FX FY FS K1 K2 K3)
        8 x camera 1 intrinsics
        3 Euler angles or 9 matrix entries (row-major), then TX TY TZ
        image height
        image width

Detection tries each dialect in turn. Each attempt re-reads the file and
reports MATCHED, NOT_MATCHED or MALFORMED; only NOT_MATCHED moves on to the
next dialect.
"""

from dataclasses import dataclass
from enum import Enum
from itertools import count
from pathlib import Path
from typing import List, Optional, Tuple, Union
import logging
import re

import numpy as np

from .camera import Camera, CameraInfo
from .config import SystemConfig
from .distortion import IntrinsicParam, LensDistortionModel
from .param_list import (
    ParameterList,
    ParameterListError,
    parse_numeric_list,
    read_parameter_list,
)

logger = logging.getLogger(__name__)

# Native dialect wire names
CALIBRATION_FILE_MARKER = 'DICe_XML_Calibration_File'
SYSTEM_TYPE_PARAM = 'system_type_3D'
IMAGE_HEIGHT_WIDTH = 'IMAGE_HEIGHT_WIDTH'
LENS_DISTORTION_MODEL = 'LENS_DISTORTION_MODEL'
CAMERA_ID = 'CAMERA_ID'
PIXEL_DEPTH = 'PIXEL_DEPTH'
LENS = 'LENS'
COMMENTS = 'COMMENTS'
TRANSLATION_NAMES = ('TX', 'TY', 'TZ')
EULER_NAMES = ('ALPHA', 'BETA', 'GAMMA')
ROTATION_SUBLIST = 'rotation_3x3_matrix'
USER_6_TRANSFORM = 'user_6_param_transform'
USER_4X4_TRANSFORM = 'user_4x4_param_transform'

# Field order of the 8 intrinsics in the VIC3D and text dialects
LEGACY_INTRINSIC_ORDER = (
    IntrinsicParam.CX, IntrinsicParam.CY, IntrinsicParam.FX, IntrinsicParam.FY,
    IntrinsicParam.FS, IntrinsicParam.K1, IntrinsicParam.K2, IntrinsicParam.K3,
)
LEGACY_DISTORTION_MODEL = LensDistortionModel.K1R1_K2R2_K3R3

TEXT_VALUES_WITH_EULERS = 24
TEXT_VALUES_WITH_MATRIX = 30


def camera_sublist_name(index: int) -> str:
    return f"CAMERA {index}"


def row_name(index: int) -> str:
    return f"ROW {index}"


class SystemType(Enum):
    """Provenance of a calibration (which dialect and camera convention)."""
    UNKNOWN_SYSTEM = "UNKNOWN_SYSTEM"
    GENERIC_SYSTEM = "GENERIC_SYSTEM"
    OPENCV = "OPENCV"
    VIC3D = "VIC3D"

    @classmethod
    def from_string(cls, text: str) -> "SystemType":
        try:
            return cls(text.strip())
        except ValueError:
            valid = ', '.join(t.value for t in cls)
            raise ValueError(f"Unrecognized system type '{text}' (valid: {valid})") from None


class CalibrationParseError(ValueError):
    """Raised when a calibration file is malformed or inconsistent."""


class UnsupportedFormatError(CalibrationParseError):
    """Raised when no dialect recognizes a calibration file."""


@dataclass(frozen=True)
class CalibrationData:
    """Everything read from a calibration file."""
    system_type: SystemType
    cameras: Tuple[Camera, ...]
    user_6_transform: Optional[np.ndarray] = None
    user_4x4_transform: Optional[np.ndarray] = None


class ParseStatus(Enum):
    MATCHED = "matched"
    NOT_MATCHED = "not_matched"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class ParseOutcome:
    """Tagged result of one dialect attempt."""
    status: ParseStatus
    data: Optional[CalibrationData] = None
    error: Optional[CalibrationParseError] = None
    reason: str = ''

    @classmethod
    def matched(cls, data: CalibrationData) -> "ParseOutcome":
        return cls(ParseStatus.MATCHED, data=data)

    @classmethod
    def not_matched(cls, reason: str) -> "ParseOutcome":
        return cls(ParseStatus.NOT_MATCHED, reason=reason)

    @classmethod
    def malformed(cls, error: CalibrationParseError) -> "ParseOutcome":
        return cls(ParseStatus.MALFORMED, error=error, reason=str(error))


def _tokenize(line: str, delimiters: str) -> List[str]:
    return [t for t in re.split(f"[{re.escape(delimiters)}]+", line.strip()) if t]


def _to_float(token: str, path: Path, what: str) -> float:
    try:
        return float(token)
    except ValueError:
        raise CalibrationParseError(f"{path}: invalid number '{token}' for {what}") from None


def _build_camera(info: CameraInfo, config: SystemConfig) -> Camera:
    try:
        return Camera(info, config.distortion)
    except ValueError as e:
        raise CalibrationParseError(str(e)) from e


class ParseStrategy:
    """
    One calibration dialect.

    Subclasses implement _parse, which either returns an outcome or raises.
    Any ValueError raised once a dialect has claimed the file becomes a
    MALFORMED outcome.
    """

    name = ''

    def parse(self, path: Path, config: SystemConfig) -> ParseOutcome:
        try:
            return self._parse(path, config)
        except CalibrationParseError as e:
            return ParseOutcome.malformed(e)
        except (ValueError, IndexError) as e:
            error = CalibrationParseError(f"{path}: {e}")
            error.__cause__ = e
            return ParseOutcome.malformed(error)

    def _parse(self, path: Path, config: SystemConfig) -> ParseOutcome:
        raise NotImplementedError


class NativeXMLStrategy(ParseStrategy):
    """Native ParameterList calibration files."""

    name = 'native'

    def _parse(self, path: Path, config: SystemConfig) -> ParseOutcome:
        try:
            plist = read_parameter_list(path)
        except ParameterListError as e:
            return ParseOutcome.not_matched(f"not a ParameterList document ({e})")

        if CALIBRATION_FILE_MARKER not in plist:
            return ParseOutcome.not_matched(f"no {CALIBRATION_FILE_MARKER} parameter")

        logger.debug(f"{path}: native calibration file")
        system_type = SystemType.from_string(plist.get_string(SYSTEM_TYPE_PARAM))
        logger.debug(f"Found system type {system_type.value}")

        cameras = []
        for i in count():
            name = camera_sublist_name(i)
            if not plist.is_sublist(name):
                break
            if i >= config.max_num_cameras - 1:
                raise CalibrationParseError(
                    f"{path}: too many cameras, at most {config.max_num_cameras - 1} are supported"
                )
            cameras.append(self._parse_camera(plist.sublist(name), i, config))

        user_6 = None
        if plist.is_parameter(USER_6_TRANSFORM):
            user_6 = np.array(parse_numeric_list(plist.get_string(USER_6_TRANSFORM), 6))
            logger.debug(f"Found {USER_6_TRANSFORM}: {user_6.tolist()}")

        user_4x4 = None
        if plist.is_sublist(USER_4X4_TRANSFORM):
            rows = plist.sublist(USER_4X4_TRANSFORM)
            user_4x4 = np.array([parse_numeric_list(rows.get_string(row_name(j)), 4) for j in range(4)])
            logger.debug(f"Found {USER_4X4_TRANSFORM}")

        return ParseOutcome.matched(CalibrationData(system_type, tuple(cameras), user_6, user_4x4))

    @staticmethod
    def _parse_camera(params: ParameterList, index: int, config: SystemConfig) -> Camera:
        info = CameraInfo()
        info.id = params.get_string(CAMERA_ID, camera_sublist_name(index))

        info.lens_distortion_model = LensDistortionModel.from_string(
            params.get_string(LENS_DISTORTION_MODEL)
        )
        info.image_height, info.image_width = parse_numeric_list(
            params.get_string(IMAGE_HEIGHT_WIDTH), 2, integer=True
        )
        logger.debug(
            f"{info.id}: model {info.lens_distortion_model.value}, "
            f"image {info.image_height} x {info.image_width}"
        )

        for param in IntrinsicParam:
            if params.is_parameter(param.name):
                info.set_intrinsic(param, params.get_double(param.name))
                logger.debug(f"{info.id}: {param.name} = {info.intrinsics[param]}")

        info.tx, info.ty, info.tz = (params.get_double(n, 0.0) for n in TRANSLATION_NAMES)

        if any(params.is_parameter(n) for n in EULER_NAMES):
            alpha, beta, gamma = (params.get_double(n, 0.0) for n in EULER_NAMES)
            info.set_rotation_from_eulers(alpha, beta, gamma)
            logger.debug(f"{info.id}: Euler angles {alpha}, {beta}, {gamma}")

        if params.is_sublist(ROTATION_SUBLIST):
            if info.rotation_source == 'eulers':
                raise CalibrationParseError(
                    f"{info.id}: cannot specify both Euler angles and {ROTATION_SUBLIST}"
                )
            rows = params.sublist(ROTATION_SUBLIST)
            info.set_rotation_matrix(
                [parse_numeric_list(rows.get_string(row_name(j)), 3) for j in range(3)]
            )

        info.pixel_depth = params.get_int(PIXEL_DEPTH, 0)
        info.lens = params.get_string(LENS, '')
        info.comments = params.get_string(COMMENTS, '')

        camera = _build_camera(info, config)
        logger.debug(f"Loaded camera {camera.id}")
        return camera


class VIC3DStrategy(ParseStrategy):
    """VIC3D calibration exports, recognized by the .xml extension."""

    name = 'vic3d'
    delimiters = ' \t<>"'

    def _parse(self, path: Path, config: SystemConfig) -> ParseOutcome:
        if path.suffix.lower() != '.xml':
            return ParseOutcome.not_matched("extension is not .xml")

        logger.debug(f"{path}: assuming VIC3D calibration format")
        infos = []
        image_size = None

        with open(path, 'r') as f:
            for line_num, line in enumerate(f, 1):
                tokens = _tokenize(line, self.delimiters)
                if not tokens:
                    continue

                if tokens[0] == 'POLYGONMASK':
                    if image_size is not None:
                        raise CalibrationParseError(f"{path}:{line_num}: more than one POLYGONMASK record")
                    if len(tokens) < 5 or tokens[1] != 'WIDTH=' or tokens[3] != 'HEIGHT=':
                        raise CalibrationParseError(f"{path}:{line_num}: malformed POLYGONMASK record")
                    width = int(_to_float(tokens[2], path, 'WIDTH'))
                    height = int(_to_float(tokens[4], path, 'HEIGHT'))
                    image_size = (height, width)
                    continue

                if tokens[0] != 'CAMERA':
                    continue
                if len(infos) >= 2:
                    raise CalibrationParseError(f"{path}:{line_num}: more than two CAMERA records")
                infos.append(self._parse_camera(tokens, path, line_num, config))

        if image_size is None or image_size[0] <= 0 or image_size[1] <= 0:
            raise CalibrationParseError(f"{path}: missing or invalid POLYGONMASK image size")
        if len(infos) != 2:
            raise CalibrationParseError(f"{path}: expected 2 CAMERA records, found {len(infos)}")

        cameras = []
        for info in infos:
            info.image_height, info.image_width = image_size
            cameras.append(_build_camera(info, config))
            logger.debug(f"Loaded VIC3D camera {info.id}")

        return ParseOutcome.matched(CalibrationData(SystemType.VIC3D, tuple(cameras)))

    @staticmethod
    def _parse_camera(tokens: List[str], path: Path, line_num: int, config: SystemConfig) -> CameraInfo:
        if len(tokens) <= 18:
            raise CalibrationParseError(
                f"{path}:{line_num}: CAMERA record has {len(tokens)} tokens, expected at least 19"
            )
        index = int(_to_float(tokens[2], path, 'camera index'))
        if not 0 <= index < config.max_num_cameras:
            raise CalibrationParseError(f"{path}:{line_num}: invalid camera index {index}")

        info = CameraInfo(id=camera_sublist_name(index), lens_distortion_model=LEGACY_DISTORTION_MODEL)
        for offset, param in enumerate(LEGACY_INTRINSIC_ORDER):
            info.set_intrinsic(param, _to_float(tokens[3 + offset], path, param.name))

        if tokens[11] != 'ORIENTATION':
            raise CalibrationParseError(f"{path}:{line_num}: expected ORIENTATION, got '{tokens[11]}'")
        alpha, beta, gamma = (_to_float(t, path, 'orientation') for t in tokens[12:15])
        info.set_rotation_from_eulers(alpha, beta, gamma)
        info.tx, info.ty, info.tz = (_to_float(t, path, 'translation') for t in tokens[15:18])
        return info


class TextStrategy(ParseStrategy):
    """Legacy one-value-per-line text calibrations, recognized by the .txt extension."""

    name = 'text'
    delimiters = ' \t<>'

    def _data_lines(self, path: Path) -> List[Tuple[int, List[str]]]:
        records = []
        with open(path, 'r') as f:
            for line_num, line in enumerate(f, 1):
                tokens = _tokenize(line, self.delimiters)
                if not tokens or tokens[0].startswith('#'):
                    continue
                if tokens[0] == 'TRANSFORM':
                    raise CalibrationParseError(
                        f"{path}:{line_num}: user transforms are not supported in the text format"
                    )
                if len(tokens) > 1 and not tokens[1].startswith('#'):
                    raise CalibrationParseError(f"{path}:{line_num}: expected one value per line")
                records.append((line_num, tokens))
        return records

    def _parse(self, path: Path, config: SystemConfig) -> ParseOutcome:
        if path.suffix.lower() != '.txt':
            return ParseOutcome.not_matched("extension is not .txt")

        logger.debug(f"{path}: assuming legacy text calibration format")
        records = self._data_lines(path)
        total = len(records)
        if total not in (TEXT_VALUES_WITH_EULERS, TEXT_VALUES_WITH_MATRIX):
            raise CalibrationParseError(
                f"{path}: found {total} values, expected {TEXT_VALUES_WITH_EULERS} "
                f"(Euler angles) or {TEXT_VALUES_WITH_MATRIX} (rotation matrix); "
                f"the image height and width are required"
            )
        has_eulers = total == TEXT_VALUES_WITH_EULERS

        values = [_to_float(tokens[0], path, f"line {line_num}") for line_num, tokens in records]

        cam0 = CameraInfo(id=camera_sublist_name(0), lens_distortion_model=LEGACY_DISTORTION_MODEL)
        cam1 = CameraInfo(id=camera_sublist_name(1), lens_distortion_model=LEGACY_DISTORTION_MODEL)
        for offset, param in enumerate(LEGACY_INTRINSIC_ORDER):
            cam0.set_intrinsic(param, values[offset])
            cam1.set_intrinsic(param, values[8 + offset])

        extrinsics = values[16:total - 2]
        cam1.tx, cam1.ty, cam1.tz = extrinsics[-3:]
        if has_eulers:
            cam1.set_rotation_from_eulers(*extrinsics[:3])
        else:
            cam1.set_rotation_matrix(np.reshape(extrinsics[:9], (3, 3)))

        height, width = int(values[-2]), int(values[-1])
        if height < 0 or width < 0:
            raise CalibrationParseError(f"{path}: negative image size {height} x {width}")
        logger.debug(f"Image height: {height} image width: {width}")
        for info in (cam0, cam1):
            info.image_height, info.image_width = height, width

        cameras = (_build_camera(cam0, config), _build_camera(cam1, config))
        return ParseOutcome.matched(CalibrationData(SystemType.GENERIC_SYSTEM, cameras))


STRATEGIES = (NativeXMLStrategy(), VIC3DStrategy(), TextStrategy())


def read_calibration_file(
    path: Union[str, Path],
    config: Optional[SystemConfig] = None,
) -> CalibrationData:
    """
    Read a calibration file in any supported dialect.

    Args:
        path: Path to the calibration file
        config: System configuration (defaults used when omitted)

    Returns:
        CalibrationData with the system type, cameras and user transforms

    Raises:
        FileNotFoundError: If the file does not exist
        CalibrationParseError: If the file is malformed
        UnsupportedFormatError: If no dialect recognizes the file
    """
    path = Path(path)
    if not path.is_file():
        raise FileNotFoundError(f"Calibration file not found: {path}")
    config = config or SystemConfig()

    reasons = {}
    for strategy in STRATEGIES:
        outcome = strategy.parse(path, config)
        if outcome.status is ParseStatus.MATCHED:
            data = outcome.data
            logger.info(
                f"Loaded {len(data.cameras)} camera(s) from {path} "
                f"({strategy.name} format, system type {data.system_type.value})"
            )
            return data
        if outcome.status is ParseStatus.MALFORMED:
            raise outcome.error
        logger.debug(f"{path}: {strategy.name} format not matched: {outcome.reason}")
        reasons[strategy.name] = outcome.reason

    details = '; '.join(f"{name}: {reason}" for name, reason in reasons.items())
    raise UnsupportedFormatError(f"Unrecognized calibration file format for {path} ({details})")
