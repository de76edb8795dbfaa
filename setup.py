"""
GenAI Chat Lib 安装配置

智能体与会话库的安装脚本
"""

from setuptools import setup, find_packages

# 读取 README 文件作为长描述
try:
    with open("README.md", "r", encoding="utf-8") as fh:
        long_description = fh.read()
except FileNotFoundError:
    long_description = "智能体与会话库 - 基于 Gemini 推理API与 Redis 持久化的有状态会话"

# 读取依赖列表
try:
    with open("requirements.txt", "r", encoding="utf-8") as fh:
        requirements = [line.strip() for line in fh if line.strip() and not line.startswith("#")]
except FileNotFoundError:
    requirements = [
        "pydantic>=2.0.0",
        "httpx>=0.24.0",
        "loguru>=0.7.0",
        "redis>=5.0.1",
    ]

setup(
    name="genai-chat-lib",
    version="0.1.0",
    description="智能体与会话库 - 基于 Gemini 推理API与 Redis 持久化的有状态会话",
    long_description=long_description,
    long_description_content_type="text/markdown",
    packages=find_packages(exclude=["tests", "tests.*"]),
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Topic :: Software Development :: Libraries :: Python Modules",
        "Topic :: Scientific/Engineering :: Artificial Intelligence",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.9",
    install_requires=requirements,
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-asyncio>=0.21.0",
            "pytest-cov>=4.0.0",
            "black>=22.0.0",
            "flake8>=5.0.0",
            "mypy>=1.0.0",
        ],
    },
    keywords="ai, agent, chat, llm, gemini, redis, tools",
    include_package_data=True,
    zip_safe=False,
)
