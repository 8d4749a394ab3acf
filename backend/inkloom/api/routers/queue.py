"""
队列管理API路由

提供队列状态查询和配置管理功能。
"""

import json
import logging

from fastapi import APIRouter, Depends

from ...core.config import _get_config_file_path
from ...core.dependencies import AppServices, get_services
from ...schemas.queue import (
    QueueConfigResponse,
    QueueConfigUpdate,
    QueueStatus,
    QueueStatusResponse,
    SummaryQueueStatus,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/queue", tags=["队列管理"])


@router.get("/status", response_model=QueueStatusResponse)
async def get_queue_status(services: AppServices = Depends(get_services)) -> QueueStatusResponse:
    """
    获取所有队列的当前状态

    - llm: 模型请求的并发槽位占用与等待情况
    - summary: 摘要任务的排队、处理中与累计结果
    """
    return QueueStatusResponse(
        llm=QueueStatus(**services.llm_queue.get_status()),
        summary=SummaryQueueStatus(**services.summary_queue.get_status()),
    )


@router.get("/config", response_model=QueueConfigResponse)
async def get_queue_config(services: AppServices = Depends(get_services)) -> QueueConfigResponse:
    return QueueConfigResponse(llm_max_concurrent=services.llm_queue.max_concurrent)


@router.put("/config", response_model=QueueConfigResponse)
async def update_queue_config(
    config: QueueConfigUpdate,
    services: AppServices = Depends(get_services),
) -> QueueConfigResponse:
    """
    更新队列配置（运行时生效并持久化到config.json）

    配置会同时保存到config.json文件，重启后仍然生效。
    """
    llm_queue = services.llm_queue

    if config.llm_max_concurrent is not None:
        await llm_queue.set_max_concurrent(config.llm_max_concurrent)
        services.settings.llm_max_concurrent = config.llm_max_concurrent
        logger.info("LLM队列并发数已更新为: %d", config.llm_max_concurrent)
        _save_queue_config_to_file(llm_max_concurrent=llm_queue.max_concurrent)

    return QueueConfigResponse(llm_max_concurrent=llm_queue.max_concurrent)


def _save_queue_config_to_file(llm_max_concurrent: int) -> None:
    """将队列配置合并写入config.json，保留文件中的其他运维参数"""
    config_file = _get_config_file_path()

    existing_config = {}
    if config_file.exists():
        try:
            with open(config_file, 'r', encoding='utf-8') as f:
                existing_config = json.load(f)
        except (OSError, ValueError) as e:
            logger.warning("读取config.json失败: %s", e)

    existing_config['llm_max_concurrent'] = llm_max_concurrent

    config_file.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(config_file, 'w', encoding='utf-8') as f:
            json.dump(existing_config, f, indent=2, ensure_ascii=False)
        logger.info("队列配置已保存到: %s", config_file)
    except OSError as e:
        logger.error("保存config.json失败: %s", e)
