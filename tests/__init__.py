"""
Net Optimizer Test Suite
=========================

测试模块组织：

tests/
├── framework/           # 核心框架测试
│   ├── test_core.py              # 数据模型与 PassRegistry
│   ├── test_graph_io.py          # GraphDef / npz 读写
│   ├── test_infrastructure.py    # Pipeline 排序与失败中止
│   ├── test_logging.py           # 日志系统测试
│   └── test_visualize.py         # DOT 导出
│
└── passes/              # 优化 Pass 测试
    └── test_insert_int8_reformat.py  # int8/float 边界插入 Reformat

运行测试：
    python -m pytest tests/ -v

    # 运行特定模块
    python -m pytest tests/framework/ -v
    python -m pytest tests/passes/ -v
"""
