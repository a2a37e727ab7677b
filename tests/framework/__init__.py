"""
Framework Tests - 核心框架测试模块
===================================

模块列表：
- test_core.py              : 数据模型、Status、PassRegistry、consumer 索引
- test_graph_io.py          : NetStructure 与 GraphDef / npz 的读写
- test_infrastructure.py    : OptimizationPipeline 的排序、跳过与失败中止
- test_logging.py           : 日志系统配置和级别控制
- test_visualize.py         : DOT 导出
"""
