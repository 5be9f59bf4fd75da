"""
集中管理应用版本号

提供统一的版本来源，供请求头与命令行展示使用。
"""

# 当前应用版本号（仅数字与点，外观显示时可加前缀`v`）
__version__ = "1.0.0"
