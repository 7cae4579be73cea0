"""
引擎异常定义

只有初始化阶段的致命错误会以异常形式抛出；
运行期的校验失败、持久化缺失、模型不可用都以返回值表示。
"""


class IMEError(Exception):
    """引擎异常基类"""


class InitializationError(IMEError):
    """组件初始化失败"""

    def __init__(self, message: str, component: str = ""):
        super().__init__(message)
        self.component = component


class StorageOpenError(InitializationError):
    """词库文件无法打开"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, component="store")
        self.path = path


class SchemaError(InitializationError):
    """词库表结构创建失败"""

    def __init__(self, message: str):
        super().__init__(message, component="store")


class ModelLoadError(InitializationError):
    """语言模型加载失败（非致命，仅禁用预测）"""

    def __init__(self, message: str, path: str = ""):
        super().__init__(message, component="predictor")
        self.path = path


__all__ = [
    "IMEError",
    "InitializationError",
    "StorageOpenError",
    "SchemaError",
    "ModelLoadError",
]
