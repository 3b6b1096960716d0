"""调度层：流式/批量决策、取消令牌与错误分类。"""
