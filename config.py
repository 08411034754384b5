"""
Configuration module for the pipeline engine.
Loads settings from environment variables or .env file.
流水线引擎配置模块。
从环境变量或 .env 文件加载所有配置项。
"""

import os
from dotenv import load_dotenv

load_dotenv()  # 自动读取项目根目录的 .env 文件（若存在），优先级低于系统环境变量

# --- Pipeline ---
# --- 流水线 ---
PIPELINE_NAME = os.getenv("PIPELINE_NAME", "pipeline")        # Default build name when the pipeline file sets none / 默认构建名
PIPELINE_CI = os.getenv("PIPELINE_CI", os.getenv("CI", "false")).lower() in ("1", "true", "yes")  # 是否运行在 CI 环境中

# --- Execution ---
# --- 执行参数 ---
MAX_PARALLEL_TASKS = int(os.getenv("MAX_PARALLEL_TASKS", "0"))  # 同时运行的最大任务数（0 = 不限制）

# --- Logging ---
# --- 日志 ---
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()  # 根日志级别（-v 会覆盖为 DEBUG）
