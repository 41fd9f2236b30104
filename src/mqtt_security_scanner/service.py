"""
审计编排服务层
三个阶段：Dispatch（并发启动检查项）→ Await（等待全部完成，任一基础设施错误即终止）
→ Finalize（单独运行独占检查项并汇总结果）
"""

import asyncio
import time
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional

from .exceptions import AuditAbortedError
from .logger_config import logger
from .models import AuditConfig, AuditReport, AuditStatus, CheckResult
from .probes import ProbeContext, ProbeSpec, default_probes

ProgressCallback = Callable[[str, str], Awaitable[None]]

CONFIGURATION_ITEM = "Configuration"


class AuditPhase(str, Enum):
    """编排阶段"""
    DISPATCH = "dispatch"
    AWAIT = "await"
    FINALIZE = "finalize"


class AuditService:
    """Broker 安全审计服务"""

    def __init__(self, probes: Optional[List[ProbeSpec]] = None):
        """
        Args:
            probes: 自定义检查项列表，默认按配置从注册表中选取
        """
        self.probes = probes
        logger.info("AuditService initialized")

    def select_probes(self, config: AuditConfig) -> List[ProbeSpec]:
        """本次运行需要执行的检查项（按报告顺序）"""
        if self.probes is not None:
            return [spec for spec in self.probes if spec.enabled(config)]
        return default_probes(config)

    # ==================== 同步调用模式 ====================

    def audit_sync(self,
                   config: AuditConfig,
                   progress_callback: Optional[ProgressCallback] = None) -> AuditReport:
        """
        同步执行一次完整审计

        Args:
            config: 审计配置
            progress_callback: 进度回调函数

        Returns:
            AuditReport: 审计报告

        Raises:
            AuditAbortedError: 任一检查项出现基础设施错误
        """
        return asyncio.run(self.audit_async(config, progress_callback))

    # ==================== 异步调用模式 ====================

    async def audit_async(self,
                          config: AuditConfig,
                          progress_callback: Optional[ProgressCallback] = None) -> AuditReport:
        """
        异步执行一次完整审计

        每个检查项恰好产生一个结果；出现基础设施错误时不产生部分报告，直接抛出 AuditAbortedError。
        """
        report = AuditReport(status=AuditStatus.RUNNING)
        logger.info(f"开始审计 Broker: {config.broker.host}")

        specs = self.select_probes(config)
        concurrent = [spec for spec in specs if not spec.exclusive]
        exclusive = [spec for spec in specs if spec.exclusive]

        try:
            ctx = ProbeContext.from_config(config)
        except Exception as e:
            logger.error(f"审计配置无效: {e}")
            raise AuditAbortedError(CONFIGURATION_ITEM, AuditPhase.DISPATCH.value, e) from e

        results: Dict[str, CheckResult] = {}

        # 1. Dispatch + Await
        if progress_callback:
            await progress_callback(AuditPhase.DISPATCH.value, f"并发运行 {len(concurrent)} 个检查项...")
        results.update(await self._run_concurrently(concurrent, ctx))

        # 2. Finalize
        for spec in exclusive:
            if progress_callback:
                await progress_callback(AuditPhase.FINALIZE.value, f"单独运行检查项 [{spec.name}]...")
            try:
                results[spec.name] = await self._run_probe(spec, ctx)
            except Exception as e:
                logger.error(f"检查项执行失败 [{spec.name}]: {e}")
                raise AuditAbortedError(spec.name, AuditPhase.FINALIZE.value, e) from e

        report.results = [results[spec.name] for spec in specs]
        report.mark_completed()

        passed = sum(1 for result in report.results if result.passed)
        logger.info(f"审计完成: {passed}/{len(report.results)} 项通过，耗时 {report.scan_duration:.2f}秒")
        if progress_callback:
            await progress_callback("complete", f"审计完成，{passed}/{len(report.results)} 项通过")
        return report

    async def _run_concurrently(self, specs: List[ProbeSpec], ctx: ProbeContext) -> Dict[str, CheckResult]:
        """并发运行检查项，任一检查项抛出异常即取消其余检查项"""
        if not specs:
            return {}

        tasks = {asyncio.create_task(self._run_probe(spec, ctx)): spec for spec in specs}
        try:
            done, pending = await asyncio.wait(list(tasks), return_when=asyncio.FIRST_EXCEPTION)
        except asyncio.CancelledError:
            await self._cancel(list(tasks))
            raise

        # 按注册顺序取第一个失败的检查项，保证错误归属确定
        failed = next((task for task in tasks
                       if task in done and not task.cancelled() and task.exception() is not None), None)
        if failed is None:
            return {tasks[task].name: task.result() for task in done}

        await self._cancel(pending)
        spec = tasks[failed]
        error = failed.exception()
        logger.error(f"检查项执行失败 [{spec.name}]: {error}")
        raise AuditAbortedError(spec.name, AuditPhase.AWAIT.value, error) from error

    @staticmethod
    async def _cancel(tasks) -> None:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    @staticmethod
    async def _run_probe(spec: ProbeSpec, ctx: ProbeContext) -> CheckResult:
        logger.info(f"Start running scanner item [{spec.name}]")
        start_time = time.time()
        with logger.contextualize(probe=spec.name):
            result = await spec.run(ctx)
        verdict = "pass" if result.passed else "do not pass"
        logger.info(f"Finish running scanner item [{spec.name}]: {verdict}，耗时 {time.time() - start_time:.2f}秒")
        return result


# ==================== 便捷函数 ====================

# 全局服务实例
_default_service = None


def get_default_service() -> AuditService:
    """获取默认服务实例"""
    global _default_service
    if _default_service is None:
        _default_service = AuditService()
    return _default_service


def audit(config: AuditConfig) -> AuditReport:
    """便捷的同步审计函数"""
    return get_default_service().audit_sync(config)


async def audit_async(config: AuditConfig) -> AuditReport:
    """便捷的异步审计函数"""
    return await get_default_service().audit_async(config)
